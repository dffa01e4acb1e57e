from __future__ import annotations

"""
Score projection, spread/total derivation and win probability.

Sign conventions (used everywhere in the package):
- rating gap = home rating - away rating; a positive gap helps the home side.
- spreads are home-relative in "away minus home" points, so a home favorite
  carries a negative spread (-3 means home favored by 3).

The formula helpers accept plain floats or numpy arrays so the calibrator
can evaluate a whole history per candidate with the same code path.
"""

import math
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Iterable, Mapping

import numpy as np

from sports_forecaster.config import SportProfile
from sports_forecaster.models.ratings import RatingStore


@dataclass(frozen=True)
class ModelParams:
    """
    Hyperparameters of the projection model.

    Attributes:
        regression: Weight in [0, 1] pulling team scoring stats to the league mean.
        rating_to_points: Points of spread per rating point of gap.
        home_advantage: Home edge in points, split half/half onto the two sides.
        rating_cap: Max spread contribution of the rating gap (0 = uncapped).
        spread_shrinkage: Fraction in [0, 1) the raw spread is shrunk toward 0.
        league_avg_points: Average points per team per game.
        home_rating_bonus: Elo points added to the home rating for win probability.
        rest_weight / weather_weight / injury_weight: Situational multipliers.
        min_spread_edge / min_total_edge: Points the model must differ from the
            market line before a spread or total pick counts as a best bet.
        min_moneyline_edge: Percentage points of win probability away from
            50% before a moneyline pick counts as a best bet.
    """

    regression: float = 0.3
    rating_to_points: float = 0.0593
    home_advantage: float = 2.28
    rating_cap: float = 4.0
    spread_shrinkage: float = 0.55
    league_avg_points: float = 22.0
    home_rating_bonus: float = 48.0
    rest_weight: float = 0.0
    weather_weight: float = 0.0
    injury_weight: float = 0.0
    min_spread_edge: float = 0.0
    min_total_edge: float = 0.0
    min_moneyline_edge: float = 0.0

    @classmethod
    def for_sport(cls, profile: SportProfile, **overrides: float) -> "ModelParams":
        values: dict[str, float] = {
            "league_avg_points": profile.league_avg_points,
            "home_rating_bonus": profile.elo_home_bonus,
        }
        values.update(profile.default_params)
        values.update(overrides)
        return cls(**values)

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def with_values(self, **values: float) -> "ModelParams":
        unknown = set(values) - set(self.field_names())
        if unknown:
            raise ValueError(f"Unknown ModelParams fields: {sorted(unknown)}")
        return replace(self, **values)

    def validate(self) -> None:
        """Raise ValueError if any value is non-numeric, non-finite or out of range."""
        for name, value in asdict(self).items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number; got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite; got {value}")
        if not 0.0 <= self.regression <= 1.0:
            raise ValueError(f"regression must be in [0, 1]; got {self.regression}")
        if not 0.0 <= self.spread_shrinkage < 1.0:
            raise ValueError(f"spread_shrinkage must be in [0, 1); got {self.spread_shrinkage}")
        if self.rating_cap < 0:
            raise ValueError(f"rating_cap must be >= 0; got {self.rating_cap}")
        if self.rating_to_points < 0:
            raise ValueError(f"rating_to_points must be >= 0; got {self.rating_to_points}")
        if self.league_avg_points <= 0:
            raise ValueError(f"league_avg_points must be > 0; got {self.league_avg_points}")
        for name in (
            "rest_weight",
            "weather_weight",
            "injury_weight",
            "min_spread_edge",
            "min_total_edge",
            "min_moneyline_edge",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0; got {getattr(self, name)}")

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Adjustment:
    """A situational nudge in points applied to each side's projection."""

    name: str
    home: float = 0.0
    away: float = 0.0

    @classmethod
    def on_total(cls, name: str, delta: float) -> "Adjustment":
        """Total-level adjustment, split evenly between the sides."""
        return cls(name=name, home=delta / 2.0, away=delta / 2.0)

    @classmethod
    def on_margin(cls, name: str, home_edge: float) -> "Adjustment":
        """Shift the home margin by `home_edge` without changing the total."""
        return cls(name=name, home=home_edge / 2.0, away=-home_edge / 2.0)

    @property
    def total(self) -> float:
        return self.home + self.away


@dataclass(frozen=True)
class TeamSnapshot:
    """Inputs for one side of a projection; missing stats fall back to the league mean."""

    rating: float
    points_for: float | None = None
    points_against: float | None = None


@dataclass(frozen=True)
class ScoreProjection:
    home_score: float
    away_score: float
    adjustments: tuple[Adjustment, ...] = ()

    @property
    def total(self) -> float:
        return self.home_score + self.away_score

    def breakdown(self) -> dict[str, dict[str, float]]:
        """Per-side points added by each adjustment, keyed by name."""
        out: dict[str, dict[str, float]] = {}
        for adj in self.adjustments:
            side = out.setdefault(adj.name, {"home": 0.0, "away": 0.0})
            side["home"] += adj.home
            side["away"] += adj.away
        return out


# ----------------------------------------------------------------------
# Formula helpers (float or ndarray)
# ----------------------------------------------------------------------
def regress_to_mean(raw, league_avg, weight):
    return raw * (1.0 - weight) + league_avg * weight


def rating_adjustment(rating_diff, rating_to_points, cap):
    """Per-side points from the rating gap; both sides move by this amount."""
    half = rating_diff * rating_to_points / 2.0
    if cap > 0:
        half = np.clip(half, -cap / 2.0, cap / 2.0)
    return half


def project_scores(
    home_rating,
    away_rating,
    home_points_for,
    home_points_against,
    away_points_for,
    away_points_against,
    params: ModelParams,
    home_extra=0.0,
    away_extra=0.0,
):
    """Steps 1-5 of the projection; returns (home_score, away_score)."""
    avg = params.league_avg_points
    r = params.regression

    home_off = regress_to_mean(home_points_for, avg, r)
    home_def = regress_to_mean(home_points_against, avg, r)
    away_off = regress_to_mean(away_points_for, avg, r)
    away_def = regress_to_mean(away_points_against, avg, r)

    home_score = (home_off + away_def) / 2.0
    away_score = (away_off + home_def) / 2.0

    adj = rating_adjustment(home_rating - away_rating, params.rating_to_points, params.rating_cap)
    home_score = home_score + adj + params.home_advantage / 2.0
    away_score = away_score - adj - params.home_advantage / 2.0

    return home_score + home_extra, away_score + away_extra


def round_half(value):
    """Round to the nearest half point, halves rounding up."""
    return np.floor(np.asarray(value, dtype=float) * 2.0 + 0.5) / 2.0


def spread_from_scores(home_score, away_score, shrinkage):
    return round_half((away_score - home_score) * (1.0 - shrinkage))


_PROB_EPS = 1e-12


def win_probability(home_rating, away_rating, home_bonus):
    """Elo expected score for the home side, kept strictly inside (0, 1)."""
    exponent = np.clip((away_rating - (home_rating + home_bonus)) / 400.0, -50.0, 50.0)
    p = 1.0 / (1.0 + 10.0 ** exponent)
    return np.clip(p, _PROB_EPS, 1.0 - _PROB_EPS)


# ----------------------------------------------------------------------
# Scalar API
# ----------------------------------------------------------------------
def predict_score(
    home: TeamSnapshot,
    away: TeamSnapshot,
    params: ModelParams,
    adjustments: Iterable[Adjustment] = (),
) -> ScoreProjection:
    """Pure projection of (home, away) score from ratings, stats and adjustments."""
    avg = params.league_avg_points
    adjustments = tuple(a for a in adjustments if a is not None)
    home_extra = sum(a.home for a in adjustments)
    away_extra = sum(a.away for a in adjustments)

    home_score, away_score = project_scores(
        home.rating,
        away.rating,
        avg if home.points_for is None else home.points_for,
        avg if home.points_against is None else home.points_against,
        avg if away.points_for is None else away.points_for,
        avg if away.points_against is None else away.points_against,
        params,
        home_extra,
        away_extra,
    )
    return ScoreProjection(float(home_score), float(away_score), adjustments)


def derive_spread(projection: ScoreProjection, shrinkage: float) -> float:
    return float(spread_from_scores(projection.home_score, projection.away_score, shrinkage))


def derive_total(projection: ScoreProjection) -> float:
    return projection.total


def home_win_probability(home_rating: float, away_rating: float, home_bonus: float) -> float:
    return float(win_probability(home_rating, away_rating, home_bonus))


@dataclass
class PredictionRecord:
    """One model run's forecast for one game."""

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
    game_time: str | None = None
    model_version: str = ""
    adjustments: dict[str, dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PredictionRecord":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


class ScorePredictor:
    """
    Produces PredictionRecords from a RatingStore.

    The store is read, never written: ratings move only through RatingUpdater.
    """

    def __init__(self, params: ModelParams, model_version: str = "v1") -> None:
        params.validate()
        self.params = params
        self.model_version = model_version

    def snapshot(self, store: RatingStore, team_id: str) -> TeamSnapshot:
        if team_id in store:
            team = store.get(team_id)
            return TeamSnapshot(team.rating, team.points_for_per_game, team.points_against_per_game)
        return TeamSnapshot(store.base_rating)

    def predict(
        self,
        store: RatingStore,
        game_id: str,
        home_id: str,
        away_id: str,
        adjustments: Iterable[Adjustment] = (),
        game_time: str | None = None,
    ) -> PredictionRecord:
        home = self.snapshot(store, home_id)
        away = self.snapshot(store, away_id)
        projection = predict_score(home, away, self.params, adjustments)

        return PredictionRecord(
            game_id=game_id,
            home_team=home_id,
            away_team=away_id,
            home_rating=home.rating,
            away_rating=away.rating,
            predicted_home_score=round(projection.home_score, 2),
            predicted_away_score=round(projection.away_score, 2),
            predicted_spread=derive_spread(projection, self.params.spread_shrinkage),
            predicted_total=round(derive_total(projection), 2),
            home_win_probability=home_win_probability(
                home.rating, away.rating, self.params.home_rating_bonus
            ),
            game_time=game_time,
            model_version=self.model_version,
            adjustments=projection.breakdown(),
        )
