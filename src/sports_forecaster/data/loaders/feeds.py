from __future__ import annotations

"""
Collaborator boundary for schedule and market-line data.

Feeds are whatever produces canonical game rows and market lines. Every read
the backtest runner makes goes through `fetch_with_timeout`, which turns a
timeout or a feed failure into "no data this run" instead of an exception.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional, Protocol, TypeVar

import pandas as pd

from sports_forecaster.evaluation.records import MarketLine

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FEED_TIMEOUT = 30.0

# Canonical columns every schedule feed must provide
GAME_COLUMNS = [
    "game_id",
    "gameday",
    "home_team",
    "away_team",
    "status",
    "home_score",
    "away_score",
]

STATUS_SCHEDULED = "scheduled"
STATUS_FINAL = "final"


class FeedError(RuntimeError):
    """An upstream feed failed or returned a malformed payload."""


class ScheduleFeed(Protocol):
    def fetch_games(self) -> pd.DataFrame:
        ...


class MarketLineFeed(Protocol):
    def fetch_line(self, game_id: str) -> Optional[MarketLine]:
        ...


def fetch_with_timeout(
    fn: Callable[..., T],
    *args,
    timeout: float = DEFAULT_FEED_TIMEOUT,
    default: T = None,
    description: str = "feed read",
) -> T:
    """
    Call fn(*args) with a deadline.

    Returns `default` (and logs a warning) if the call times out or raises.
    The worker thread is not killed on timeout; its result is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning("%s timed out after %.1fs; continuing without it.", description, timeout)
        return default
    except Exception as e:
        logger.warning("%s failed (%s: %s); continuing without it.", description, type(e).__name__, e)
        return default
    finally:
        executor.shutdown(wait=False)


def validate_games_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Check a feed payload has the canonical shape; raise FeedError if not."""
    if not isinstance(df, pd.DataFrame):
        raise FeedError(f"Schedule feed returned {type(df).__name__}, expected a DataFrame.")
    missing = [c for c in GAME_COLUMNS if c not in df.columns]
    if missing:
        raise FeedError(f"Schedule feed payload missing required columns: {missing}")
    bad_status = set(df["status"].dropna().unique()) - {STATUS_SCHEDULED, STATUS_FINAL}
    if bad_status:
        raise FeedError(f"Unknown game status values: {sorted(bad_status)}")

    out = df.copy()
    out["game_id"] = out["game_id"].astype(str)
    repeated = out["game_id"].duplicated(keep=False)
    if repeated.any():
        ids = sorted(out.loc[repeated, "game_id"].unique())
        raise FeedError(f"Schedule feed payload repeats {len(ids)} game_id(s): {ids[:10]}")
    out["gameday"] = pd.to_datetime(out["gameday"])
    return out


class FrameScheduleFeed:
    """Serves games from an in-memory DataFrame (any sport, tests, replays)."""

    def __init__(self, games: pd.DataFrame) -> None:
        self._games = games

    def fetch_games(self) -> pd.DataFrame:
        return validate_games_frame(self._games)


class FrameMarketLineFeed:
    """
    Serves market lines from a DataFrame.

    Expects game_id, market_spread, market_total and optionally captured_at,
    opening_spread, opening_total.
    """

    def __init__(self, lines: pd.DataFrame) -> None:
        missing = [c for c in ("game_id", "market_spread", "market_total") if c not in lines.columns]
        if missing:
            raise KeyError(f"Market line frame missing required columns: {missing}")
        self._lines = {str(row["game_id"]): row for _, row in lines.iterrows()}

    @classmethod
    def from_games(cls, games: pd.DataFrame) -> "FrameMarketLineFeed":
        """Lines embedded in a games frame (closing lines from a schedule feed)."""
        cols = [c for c in ("game_id", "market_spread", "market_total", "gameday") if c in games.columns]
        lines = games[cols].rename(columns={"gameday": "captured_at"})
        return cls(lines)

    def fetch_line(self, game_id: str) -> Optional[MarketLine]:
        row = self._lines.get(str(game_id))
        if row is None:
            return None
        return market_line_from_row(row)


def _optional_float(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def market_line_from_row(row) -> Optional[MarketLine]:
    """Build a MarketLine from a row with market_spread / market_total; None if both absent."""
    spread = _optional_float(row.get("market_spread"))
    total = _optional_float(row.get("market_total"))
    if spread is None and total is None:
        return None

    captured_at = row.get("captured_at")
    if captured_at is not None and not pd.isna(captured_at):
        captured_at = pd.Timestamp(captured_at).isoformat()
    else:
        captured_at = None

    return MarketLine(
        game_id=str(row["game_id"]),
        spread=spread,
        total=total,
        captured_at=captured_at,
        opening_spread=_optional_float(row.get("opening_spread")),
        opening_total=_optional_float(row.get("opening_total")),
    )
