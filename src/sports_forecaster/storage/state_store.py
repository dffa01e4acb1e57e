from __future__ import annotations

"""
Whole-document persistence of one sport's backtest state.

The document is read once at the start of a run and replaced once at the
end. Writes go to a temporary file in the same directory and are moved into
place with os.replace, so a crash mid-write leaves the previous document
intact.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sports_forecaster.config import DATA_CONFIG
from sports_forecaster.evaluation.records import BacktestResult, BacktestSummary, MarketLine
from sports_forecaster.models.predictor import PredictionRecord
from sports_forecaster.models.ratings import DEFAULT_BASE_RATING, RatingStore

logger = logging.getLogger(__name__)


@dataclass
class SportState:
    """
    In-memory form of the persisted document.

    Results, lines and predictions are keyed by game id so every write is an
    upsert; processed ids are the idempotence watermark.
    """

    sport: str
    model_version: str
    ratings: RatingStore = field(default_factory=RatingStore)
    processed_game_ids: set[str] = field(default_factory=set)
    results: dict[str, BacktestResult] = field(default_factory=dict)
    summary: BacktestSummary = field(default_factory=BacktestSummary)
    market_lines: dict[str, MarketLine] = field(default_factory=dict)
    predictions: dict[str, PredictionRecord] = field(default_factory=dict)
    current_season: int | None = None
    generated_at: str | None = None

    def to_document(self) -> dict[str, Any]:
        results = sorted(
            self.results.values(),
            key=lambda r: (r.game_time or "", r.game_id),
        )
        return {
            "sport": self.sport,
            "model_version": self.model_version,
            "generated_at": self.generated_at,
            "base_rating": self.ratings.base_rating,
            "current_season": self.current_season,
            "teams": self.ratings.to_records(),
            "processed_game_ids": sorted(self.processed_game_ids),
            "backtest_results": [r.to_dict() for r in results],
            "backtest_summary": self.summary.to_dict(),
            "market_lines": {gid: line.to_dict() for gid, line in sorted(self.market_lines.items())},
            "predictions": {gid: p.to_dict() for gid, p in sorted(self.predictions.items())},
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "SportState":
        base_rating = float(doc.get("base_rating", DEFAULT_BASE_RATING))
        results = [BacktestResult.from_dict(r) for r in doc.get("backtest_results", [])]
        return cls(
            sport=doc["sport"],
            model_version=doc["model_version"],
            ratings=RatingStore.from_records(doc.get("teams", []), base_rating=base_rating),
            processed_game_ids=set(doc.get("processed_game_ids", [])),
            results={r.game_id: r for r in results},
            summary=BacktestSummary.from_dict(doc.get("backtest_summary")),
            market_lines={
                gid: MarketLine.from_dict(line) for gid, line in doc.get("market_lines", {}).items()
            },
            predictions={
                gid: PredictionRecord.from_dict(p) for gid, p in doc.get("predictions", {}).items()
            },
            current_season=doc.get("current_season"),
            generated_at=doc.get("generated_at"),
        )


class StateStore:
    """JSON documents under `state_dir`, one per (sport, model version)."""

    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = Path(state_dir) if state_dir is not None else DATA_CONFIG.state_dir

    def path_for(self, sport: str, model_version: str) -> Path:
        return self.state_dir / f"{sport.lower()}_{model_version}.json"

    def load(self, sport: str, model_version: str, base_rating: float = DEFAULT_BASE_RATING) -> SportState:
        """Read the document, or return a fresh state when none exists yet."""
        path = self.path_for(sport, model_version)
        if not path.exists():
            logger.info("No persisted state at %s; starting fresh.", path)
            return SportState(
                sport=sport.lower(),
                model_version=model_version,
                ratings=RatingStore(base_rating=base_rating),
            )

        with path.open("r", encoding="utf-8") as fh:
            doc = json.load(fh)

        state = SportState.from_document(doc)
        if state.sport != sport.lower() or state.model_version != model_version:
            raise ValueError(
                f"State document {path} belongs to {state.sport}/{state.model_version}, "
                f"expected {sport.lower()}/{model_version}."
            )
        return state

    def save(self, state: SportState) -> Path:
        """Replace the document atomically and return its path."""
        state.generated_at = datetime.now(timezone.utc).isoformat()
        path = self.path_for(state.sport, state.model_version)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Non-finite values raise here, before any file is created
        payload = json.dumps(state.to_document(), indent=2, allow_nan=False)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info(
            "Saved %s/%s state: %d teams, %d results -> %s",
            state.sport, state.model_version, len(state.ratings), len(state.results), path,
        )
        return path
