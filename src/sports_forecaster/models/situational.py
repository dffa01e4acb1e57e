from __future__ import annotations

"""
Situational adjusters.

Each adjuster looks at a GameContext and returns an Adjustment (or None when
it has nothing to say). Adjusters never see ratings; they only nudge the
projected scores before the spread and total are derived.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol, Sequence

import numpy as np
import pandas as pd

from sports_forecaster.models.predictor import Adjustment, ModelParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeatherConditions:
    temperature: float | None = None  # deg F
    wind_speed: float | None = None  # mph
    precipitation: float | None = None  # inches
    is_indoor: bool = False

    def impact(self) -> float:
        """Scoring-suppression score; 0 indoors or in calm, mild, dry weather."""
        if self.is_indoor:
            return 0.0
        impact = 0.0
        wind = self.wind_speed or 0.0
        if wind > 15:
            impact += 0.5
        if wind > 25:
            impact += 1.0
        if self.temperature is not None:
            for threshold in (32, 20, 10):
                if self.temperature < threshold:
                    impact += 0.5
        precip = self.precipitation or 0.0
        if precip > 0:
            impact += 0.5
        if precip > 0.1:
            impact += 0.5
        return impact


@dataclass(frozen=True)
class GameContext:
    """
    Situational facts about one game.

    Attributes:
        home_rest_days / away_rest_days: Full days off before the game
            (0 = back-to-back). None when unknown.
        weather: Outdoor conditions, None when unknown.
        home_key_players_out / away_key_players_out: Count of key players
            ruled out.
        home_period_scores / away_period_scores: Points per completed
            period for a game in progress.
    """

    home_team: str = ""
    away_team: str = ""
    home_rest_days: int | None = None
    away_rest_days: int | None = None
    weather: WeatherConditions | None = None
    home_key_players_out: int = 0
    away_key_players_out: int = 0
    home_period_scores: tuple[float, ...] = ()
    away_period_scores: tuple[float, ...] = ()


class SituationalAdjuster(Protocol):
    name: str

    def adjust(self, context: GameContext, params: ModelParams) -> Adjustment | None:
        ...


class RestAdjuster:
    """
    Rest-days edge, applied to the home margin.

    A team on a back-to-back (0 rest days) facing a rested opponent gives up
    `b2b_penalty` points; each extra day of rest is worth `per_day` points,
    with the differential capped at `max_days`. Scaled by params.rest_weight.
    """

    name = "rest"
    weight_field = "rest_weight"

    def __init__(self, b2b_penalty: float = 1.5, per_day: float = 0.5, max_days: int = 2) -> None:
        self.b2b_penalty = b2b_penalty
        self.per_day = per_day
        self.max_days = max_days

    def adjust(self, context: GameContext, params: ModelParams) -> Adjustment | None:
        if params.rest_weight == 0:
            return None
        if context.home_rest_days is None or context.away_rest_days is None:
            return None

        home_b2b = context.home_rest_days == 0
        away_b2b = context.away_rest_days == 0
        edge = 0.0
        if home_b2b and not away_b2b:
            edge -= self.b2b_penalty
        elif away_b2b and not home_b2b:
            edge += self.b2b_penalty

        diff = context.home_rest_days - context.away_rest_days
        diff = max(-self.max_days, min(self.max_days, diff))
        edge += diff * self.per_day

        edge *= params.rest_weight
        if edge == 0:
            return None
        return Adjustment.on_margin(self.name, edge)


class WeatherAdjuster:
    """Lowers the total by weather impact * params.weather_weight."""

    name = "weather"
    weight_field = "weather_weight"

    def adjust(self, context: GameContext, params: ModelParams) -> Adjustment | None:
        if params.weather_weight == 0 or context.weather is None:
            return None
        impact = context.weather.impact()
        if impact == 0:
            return None
        return Adjustment.on_total(self.name, -impact * params.weather_weight)


class InjuryAdjuster:
    """Side-specific: each key player out costs that side params.injury_weight points."""

    name = "injuries"
    weight_field = "injury_weight"

    def adjust(self, context: GameContext, params: ModelParams) -> Adjustment | None:
        if params.injury_weight == 0:
            return None
        home = -params.injury_weight * max(0, context.home_key_players_out)
        away = -params.injury_weight * max(0, context.away_key_players_out)
        if home == 0 and away == 0:
            return None
        return Adjustment(self.name, home=home, away=away)


@dataclass
class PaceCalibration:
    """
    Average scoring per period, league-wide and per team.

    Fit from completed games' linescores; used to project the remaining
    scoring of a game in progress.
    """

    periods: int
    league_period_avg: list[float] = field(default_factory=list)
    team_period_avg: dict[str, list[float]] = field(default_factory=dict)

    @classmethod
    def fit(cls, linescores: pd.DataFrame, periods: int) -> "PaceCalibration":
        """
        Build averages from a linescores frame.

        Expects columns game_id, home_team, away_team and
        home_p1..home_pN / away_p1..away_pN for N = periods.
        """
        home_cols = [f"home_p{i}" for i in range(1, periods + 1)]
        away_cols = [f"away_p{i}" for i in range(1, periods + 1)]
        required = ["game_id", "home_team", "away_team"] + home_cols + away_cols
        missing = [c for c in required if c not in linescores.columns]
        if missing:
            raise KeyError(f"Linescores missing required columns: {missing}")

        df = linescores.dropna(subset=home_cols + away_cols)
        if df.empty:
            raise ValueError("No complete linescores to fit pace calibration.")

        home = df[home_cols].to_numpy(dtype=float)
        away = df[away_cols].to_numpy(dtype=float)
        league = (home + away).mean(axis=0)

        per_team = pd.concat(
            [
                pd.DataFrame(home, columns=range(periods)).assign(team=df["home_team"].to_numpy()),
                pd.DataFrame(away, columns=range(periods)).assign(team=df["away_team"].to_numpy()),
            ],
            ignore_index=True,
        )
        team_avg = per_team.groupby("team")[list(range(periods))].mean()
        logger.debug("Pace calibration fit from %d games, %d teams", len(df), len(team_avg))

        return cls(
            periods=periods,
            league_period_avg=[float(x) for x in league],
            team_period_avg={
                str(team): [float(x) for x in row] for team, row in team_avg.iterrows()
            },
        )

    def expected_remaining(self, periods_played: int, home_team: str = "", away_team: str = "") -> float:
        """Expected combined points over the periods not yet played."""
        if periods_played >= self.periods:
            return 0.0
        home_avg = self.team_period_avg.get(home_team)
        away_avg = self.team_period_avg.get(away_team)
        if home_avg is not None and away_avg is not None:
            return float(sum(home_avg[periods_played:]) + sum(away_avg[periods_played:]))
        return float(sum(self.league_period_avg[periods_played:]))

    def project_total(
        self,
        home_period_scores: Sequence[float],
        away_period_scores: Sequence[float],
        home_team: str = "",
        away_team: str = "",
    ) -> float:
        played = min(len(home_period_scores), len(away_period_scores))
        so_far = float(np.sum(home_period_scores[:played]) + np.sum(away_period_scores[:played]))
        return so_far + self.expected_remaining(played, home_team, away_team)


class PaceAdjuster:
    """
    In-game total correction.

    Moves the total toward points-so-far + expected remaining scoring, by
    `weight` (1 = trust the live projection completely).
    """

    name = "pace"

    def __init__(self, calibration: PaceCalibration, pregame_total: float, weight: float = 1.0) -> None:
        self.calibration = calibration
        self.pregame_total = pregame_total
        self.weight = weight

    def adjust(self, context: GameContext, params: ModelParams) -> Adjustment | None:
        if not context.home_period_scores or not context.away_period_scores:
            return None
        live_total = self.calibration.project_total(
            context.home_period_scores,
            context.away_period_scores,
            context.home_team,
            context.away_team,
        )
        delta = (live_total - self.pregame_total) * self.weight
        return Adjustment.on_total(self.name, delta)


def default_adjusters() -> list[SituationalAdjuster]:
    return [RestAdjuster(), WeatherAdjuster(), InjuryAdjuster()]


def apply_adjusters(
    context: GameContext,
    params: ModelParams,
    adjusters: Iterable[SituationalAdjuster],
) -> list[Adjustment]:
    out = []
    for adjuster in adjusters:
        adj = adjuster.adjust(context, params)
        if adj is not None:
            out.append(adj)
    return out


def rest_days_between(
    previous: pd.Timestamp | str | None,
    current: pd.Timestamp | str,
    max_days: int = 7,
) -> int | None:
    """Full days off between two games (0 = back-to-back), capped at max_days."""
    if previous is None or pd.isna(previous):
        return None
    gap = (pd.Timestamp(current).normalize() - pd.Timestamp(previous).normalize()).days
    return min(max_days, max(0, gap - 1))


def _value(row: Mapping, key: str):
    value = row.get(key) if hasattr(row, "get") else None
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    return value


_TRUE_FLAGS = {"true", "t", "1", "yes", "y"}
_FALSE_FLAGS = {"false", "f", "0", "no", "n", ""}


def _flag(value) -> bool:
    """Parse a boolean column that may arrive as text from a CSV or JSON feed."""
    if value is None:
        return False
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_FLAGS:
            return True
        if text in _FALSE_FLAGS:
            return False
        logger.warning("Unrecognized flag value %r; treating it as false.", value)
        return False
    return bool(value)


def _period_scores(row: Mapping, side: str) -> tuple[float, ...]:
    """Consecutive {side}_p1, {side}_p2, ... values, stopping at the first missing one."""
    scores = []
    period = 1
    while True:
        value = _value(row, f"{side}_p{period}")
        if value is None:
            break
        scores.append(float(value))
        period += 1
    return tuple(scores)


def context_from_row(
    row: Mapping,
    home_last_game: str | None = None,
    away_last_game: str | None = None,
    max_rest_days: int = 7,
) -> GameContext:
    """
    Build a GameContext from a canonical games row.

    Optional columns: temperature, wind_speed, precipitation, is_indoor,
    home_key_players_out, away_key_players_out, home_rest_days, away_rest_days,
    and linescore columns home_p1.. / away_p1.. for a game in progress.
    Rest days not present on the row are derived from the last game times.
    """
    weather = None
    if any(_value(row, c) is not None for c in ("temperature", "wind_speed", "precipitation", "is_indoor")):
        weather = WeatherConditions(
            temperature=_value(row, "temperature"),
            wind_speed=_value(row, "wind_speed"),
            precipitation=_value(row, "precipitation"),
            is_indoor=_flag(_value(row, "is_indoor")),
        )

    home_rest = _value(row, "home_rest_days")
    away_rest = _value(row, "away_rest_days")
    if home_rest is None and home_last_game is not None:
        home_rest = rest_days_between(home_last_game, row["gameday"], max_rest_days)
    if away_rest is None and away_last_game is not None:
        away_rest = rest_days_between(away_last_game, row["gameday"], max_rest_days)

    return GameContext(
        home_team=str(_value(row, "home_team") or ""),
        away_team=str(_value(row, "away_team") or ""),
        home_rest_days=None if home_rest is None else int(home_rest),
        away_rest_days=None if away_rest is None else int(away_rest),
        weather=weather,
        home_key_players_out=int(_value(row, "home_key_players_out") or 0),
        away_key_players_out=int(_value(row, "away_key_players_out") or 0),
        home_period_scores=_period_scores(row, "home"),
        away_period_scores=_period_scores(row, "away"),
    )
