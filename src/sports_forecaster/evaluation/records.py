from __future__ import annotations

"""
Record types shared by the backtest runner, the state store and the calibrator.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Mapping

from sports_forecaster.evaluation.grading import MARKETS, MONEYLINE, SPREAD, TOTAL, MarketRecord
from sports_forecaster.models.predictor import PredictionRecord


@dataclass(frozen=True)
class MarketLine:
    """
    A captured market line for one game.

    Attributes:
        game_id: Game the line belongs to.
        spread: Home-relative spread (negative = home favored), None if not offered.
        total: Over/under total, None if not offered.
        captured_at: ISO timestamp of capture.
        opening_spread / opening_total: Optional opening numbers.
        backfilled: True when the line was written by a backfill rather than
            captured before grading.
    """

    game_id: str
    spread: float | None = None
    total: float | None = None
    captured_at: str | None = None
    opening_spread: float | None = None
    opening_total: float | None = None
    backfilled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketLine":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class BacktestResult:
    """A PredictionRecord for a final game, with the realized result and grades."""

    game_id: str
    home_team: str
    away_team: str
    home_rating: float
    away_rating: float
    predicted_home_score: float
    predicted_away_score: float
    predicted_spread: float
    predicted_total: float
    home_win_probability: float
    home_score: float
    away_score: float
    actual_spread: float
    actual_total: float
    game_time: str | None = None
    season: int | None = None
    model_version: str = ""
    market_spread: float | None = None
    market_total: float | None = None
    line_captured_at: str | None = None
    spread_pick: str | None = None
    spread_result: str | None = None
    moneyline_pick: str | None = None
    moneyline_result: str | None = None
    total_pick: str | None = None
    total_result: str | None = None
    conviction: str | None = None
    spread_best_bet: bool = False
    moneyline_best_bet: bool = False
    total_best_bet: bool = False
    adjustments: dict[str, dict[str, float]] = field(default_factory=dict)

    @classmethod
    def from_prediction(
        cls,
        prediction: PredictionRecord,
        home_score: float,
        away_score: float,
        season: int | None = None,
    ) -> "BacktestResult":
        return cls(
            game_id=prediction.game_id,
            home_team=prediction.home_team,
            away_team=prediction.away_team,
            home_rating=prediction.home_rating,
            away_rating=prediction.away_rating,
            predicted_home_score=prediction.predicted_home_score,
            predicted_away_score=prediction.predicted_away_score,
            predicted_spread=prediction.predicted_spread,
            predicted_total=prediction.predicted_total,
            home_win_probability=prediction.home_win_probability,
            home_score=float(home_score),
            away_score=float(away_score),
            actual_spread=float(away_score) - float(home_score),
            actual_total=float(home_score) + float(away_score),
            game_time=prediction.game_time,
            season=season,
            model_version=prediction.model_version,
            adjustments=dict(prediction.adjustments),
        )

    def verdict(self, market: str) -> str | None:
        if market not in MARKETS:
            raise ValueError(f"Unknown market '{market}'. Expected one of {MARKETS}")
        return getattr(self, f"{market}_result")

    def is_best_bet(self, market: str) -> bool:
        """True when the graded pick in `market` cleared its minimum edge."""
        return self.verdict(market) is not None and bool(getattr(self, f"{market}_best_bet"))

    @property
    def is_graded(self) -> bool:
        return any(self.verdict(m) is not None for m in MARKETS)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BacktestResult":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class BacktestSummary:
    """
    Running totals over every graded result.

    Kept incrementally: `add` when a result is first stored, `discard` before
    a stored result is replaced, so the summary never needs a full recount.
    """

    games_processed: int = 0
    games_graded: int = 0
    last_game_time: str | None = None
    markets: dict[str, MarketRecord] = field(
        default_factory=lambda: {m: MarketRecord() for m in MARKETS}
    )
    spread_by_tier: dict[str, MarketRecord] = field(default_factory=dict)
    best_bets: dict[str, MarketRecord] = field(
        default_factory=lambda: {m: MarketRecord() for m in MARKETS}
    )

    def _apply(self, result: BacktestResult, add: bool) -> None:
        step = 1 if add else -1
        if result.is_graded:
            self.games_graded += step
        for market in MARKETS:
            record = self.markets.setdefault(market, MarketRecord())
            if add:
                record.add(result.verdict(market))
            else:
                record.discard(result.verdict(market))
            if result.is_best_bet(market):
                best = self.best_bets.setdefault(market, MarketRecord())
                if add:
                    best.add(result.verdict(market))
                else:
                    best.discard(result.verdict(market))
        if result.conviction is not None and result.spread_result is not None:
            tier = self.spread_by_tier.setdefault(result.conviction, MarketRecord())
            if add:
                tier.add(result.spread_result)
            else:
                tier.discard(result.spread_result)

    def add(self, result: BacktestResult) -> None:
        self._apply(result, add=True)

    def discard(self, result: BacktestResult) -> None:
        self._apply(result, add=False)

    def mark_processed(self, game_time: str | None) -> None:
        self.games_processed += 1
        if game_time is not None and (self.last_game_time is None or game_time > self.last_game_time):
            self.last_game_time = game_time

    @property
    def spread(self) -> MarketRecord:
        return self.markets[SPREAD]

    @property
    def moneyline(self) -> MarketRecord:
        return self.markets[MONEYLINE]

    @property
    def total(self) -> MarketRecord:
        return self.markets[TOTAL]

    def best_bet_record(self, market: str) -> MarketRecord:
        """Record over picks that cleared the minimum edge for `market`."""
        return self.best_bets.get(market, MarketRecord())

    def to_dict(self) -> dict[str, Any]:
        return {
            "games_processed": self.games_processed,
            "games_graded": self.games_graded,
            "last_game_time": self.last_game_time,
            "markets": {m: r.to_dict() for m, r in self.markets.items()},
            "spread_by_tier": {t: r.to_dict() for t, r in self.spread_by_tier.items()},
            "best_bets": {m: r.to_dict() for m, r in self.best_bets.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "BacktestSummary":
        if not data:
            return cls()
        markets = {m: MarketRecord() for m in MARKETS}
        for market, raw in data.get("markets", {}).items():
            markets[market] = MarketRecord.from_dict(raw)
        best_bets = {m: MarketRecord() for m in MARKETS}
        for market, raw in data.get("best_bets", {}).items():
            best_bets[market] = MarketRecord.from_dict(raw)
        return cls(
            games_processed=int(data.get("games_processed", 0)),
            games_graded=int(data.get("games_graded", 0)),
            last_game_time=data.get("last_game_time"),
            markets=markets,
            spread_by_tier={
                t: MarketRecord.from_dict(r) for t, r in data.get("spread_by_tier", {}).items()
            },
            best_bets=best_bets,
        )
