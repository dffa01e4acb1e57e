from __future__ import annotations

"""
Grid search over model parameters against graded history.

The history is fixed: ratings at the time of each game come from the
persisted backtest results, so calibration never replays rating updates and
never touches a RatingStore. Each candidate runs the full projection, spread
and total derivation, and grading over the whole history, using the same
formula and grading helpers as the live predictor.

Candidates are independent, so they are evaluated in a process pool
(one candidate per task).
"""

import itertools
import logging
import math
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from sports_forecaster.evaluation.grading import (
    MARKETS,
    MONEYLINE,
    SPREAD,
    TOTAL,
    MarketRecord,
    moneyline_edge,
    moneyline_outcome_sign,
    moneyline_pick_sign,
    spread_edge,
    spread_outcome_sign,
    spread_pick_sign,
    total_edge,
    total_outcome_sign,
    total_pick_sign,
)
from sports_forecaster.evaluation.splits import holdout_split
from sports_forecaster.models.predictor import (
    ModelParams,
    project_scores,
    spread_from_scores,
    win_probability,
)
from sports_forecaster.models.situational import (
    SituationalAdjuster,
    apply_adjusters,
    context_from_row,
    default_adjusters,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_GRID_SIZE = 20_000

RANK_METRICS = ("win_pct", "roi")


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Attributes:
        min_graded: Candidates with fewer graded bets in the ranking market
            are dropped from the ranked output.
        max_grid_size: Largest Cartesian product allowed before any work starts.
        max_workers: Process pool size; 1 runs sequentially in-process,
            None lets the executor pick.
        rank_market: Market whose record orders the candidates.
        rank_metric: "win_pct" or "roi"; the other breaks ties, then volume.
        holdout_seasons: Seasons excluded from the search and used to re-score
            the top candidates.
        top_n: How many ranked candidates to keep (and re-score on holdout).
    """

    min_graded: int = 50
    max_grid_size: int = DEFAULT_MAX_GRID_SIZE
    max_workers: Optional[int] = None
    rank_market: str = SPREAD
    rank_metric: str = "win_pct"
    holdout_seasons: Tuple[int, ...] = ()
    top_n: int = 10

    def __post_init__(self):
        if self.rank_market not in MARKETS:
            raise ValueError(f"rank_market must be one of {MARKETS}; got {self.rank_market}")
        if self.rank_metric not in RANK_METRICS:
            raise ValueError(f"rank_metric must be one of {RANK_METRICS}; got {self.rank_metric}")
        if self.min_graded < 0:
            raise ValueError(f"min_graded must be >= 0; got {self.min_graded}")
        if self.max_grid_size < 1:
            raise ValueError(f"max_grid_size must be >= 1; got {self.max_grid_size}")


@dataclass
class CalibrationCandidate:
    """
    One parameter set and the grading record it produced.

    Records only count picks that clear the parameter set's minimum edges,
    so edge thresholds are searched like any other parameter.
    """

    params: ModelParams
    records: Dict[str, MarketRecord] = field(default_factory=dict)
    rejected_reason: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.rejected_reason is not None

    def record(self, market: str) -> MarketRecord:
        return self.records.get(market, MarketRecord())

    def sort_key(self, market: str, metric: str) -> tuple:
        rec = self.record(market)
        win_pct = rec.win_pct if rec.win_pct is not None else -math.inf
        roi = rec.roi if rec.roi is not None else -math.inf
        primary, secondary = (win_pct, roi) if metric == "win_pct" else (roi, win_pct)
        return (-primary, -secondary, -rec.graded)

    def to_row(self) -> dict:
        row = dict(self.params.to_dict())
        for market in MARKETS:
            rec = self.record(market)
            row[f"{market}_wins"] = rec.wins
            row[f"{market}_losses"] = rec.losses
            row[f"{market}_pushes"] = rec.pushes
            row[f"{market}_graded"] = rec.graded
            row[f"{market}_win_pct"] = rec.win_pct
            row[f"{market}_roi"] = rec.roi
        row["rejected_reason"] = self.rejected_reason
        return row


@dataclass
class CalibrationReport:
    ranked: List[CalibrationCandidate]
    rejected: List[CalibrationCandidate]
    below_floor: int
    evaluated: int
    holdout: Optional[List[CalibrationCandidate]] = None

    @property
    def best(self) -> Optional[CalibrationCandidate]:
        return self.ranked[0] if self.ranked else None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([c.to_row() for c in self.ranked])


# ----------------------------------------------------------------------
# Grid
# ----------------------------------------------------------------------
def grid_size(grid: Mapping[str, Sequence[float]]) -> int:
    size = 1
    for values in grid.values():
        size *= len(values)
    return size


def check_grid(grid: Mapping[str, Sequence[float]], max_size: int = DEFAULT_MAX_GRID_SIZE) -> int:
    """Validate names and bound the Cartesian product; returns its size."""
    if not grid:
        raise ValueError("Calibration grid must name at least one parameter.")
    unknown = set(grid) - set(ModelParams.field_names())
    if unknown:
        raise ValueError(f"Unknown parameters in calibration grid: {sorted(unknown)}")
    empty = [name for name, values in grid.items() if len(values) == 0]
    if empty:
        raise ValueError(f"Calibration grid has no values for: {empty}")
    size = grid_size(grid)
    if size > max_size:
        raise ValueError(
            f"Calibration grid has {size} combinations, above the limit of {max_size}. "
            "Narrow the ranges or raise max_grid_size."
        )
    return size


def iter_grid(base: ModelParams, grid: Mapping[str, Sequence[float]]) -> Iterator[ModelParams]:
    """Yield one ModelParams per point of the Cartesian product (no validation)."""
    names = list(grid)
    for values in itertools.product(*(grid[name] for name in names)):
        yield base.with_values(**dict(zip(names, values)))


# ----------------------------------------------------------------------
# History arrays
# ----------------------------------------------------------------------
# Unit-weight params: adjusters scale linearly with their weight, so each
# one's contribution is computed once and rescaled per candidate.
_UNIT_WEIGHTS = ModelParams(rest_weight=1.0, weather_weight=1.0, injury_weight=1.0)


def _float_array(history: pd.DataFrame, col: str) -> np.ndarray:
    if col not in history.columns:
        return np.full(len(history), np.nan)
    return pd.to_numeric(history[col], errors="coerce").to_numpy(dtype=float)


def prepare_history_arrays(
    history: pd.DataFrame,
    adjusters: Optional[Sequence[SituationalAdjuster]] = None,
) -> Dict[str, np.ndarray]:
    """
    Turn a calibration history frame into plain numpy arrays.

    `history` is the output of build_calibration_history: ratings at game
    time, realized scores, market lines, pre-game scoring means and rest.
    """
    required = ["home_rating", "away_rating", "home_score", "away_score"]
    missing = [c for c in required if c not in history.columns]
    if missing:
        raise KeyError(f"Calibration history missing required columns: {missing}")

    if adjusters is None:
        adjusters = default_adjusters()

    arrays = {
        "home_rating": _float_array(history, "home_rating"),
        "away_rating": _float_array(history, "away_rating"),
        "home_score": _float_array(history, "home_score"),
        "away_score": _float_array(history, "away_score"),
        "home_points_for": _float_array(history, "home_points_for_pre"),
        "home_points_against": _float_array(history, "home_points_against_pre"),
        "away_points_for": _float_array(history, "away_points_for_pre"),
        "away_points_against": _float_array(history, "away_points_against_pre"),
        "market_spread": _float_array(history, "market_spread"),
        "market_total": _float_array(history, "market_total"),
    }
    arrays["actual_spread"] = arrays["away_score"] - arrays["home_score"]
    arrays["actual_total"] = arrays["home_score"] + arrays["away_score"]

    weighted = [a for a in adjusters if getattr(a, "weight_field", None)]
    for adjuster in weighted:
        arrays[f"{adjuster.weight_field}:home"] = np.zeros(len(history))
        arrays[f"{adjuster.weight_field}:away"] = np.zeros(len(history))

    if weighted:
        for i, (_, row) in enumerate(history.iterrows()):
            context = context_from_row(row)
            for adjuster in weighted:
                for adj in apply_adjusters(context, _UNIT_WEIGHTS, [adjuster]):
                    arrays[f"{adjuster.weight_field}:home"][i] += adj.home
                    arrays[f"{adjuster.weight_field}:away"][i] += adj.away

    return arrays


def _situational_extras(arrays: Mapping[str, np.ndarray], params: ModelParams) -> Tuple[np.ndarray, np.ndarray]:
    n = len(arrays["home_rating"])
    home_extra = np.zeros(n)
    away_extra = np.zeros(n)
    for key, values in arrays.items():
        if not key.endswith(":home"):
            continue
        weight = getattr(params, key.split(":")[0])
        home_extra = home_extra + weight * values
        away_extra = away_extra + weight * arrays[key.replace(":home", ":away")]
    return home_extra, away_extra


# ----------------------------------------------------------------------
# Candidate evaluation (top-level so it pickles into worker processes)
# ----------------------------------------------------------------------
def evaluate_candidate(params: ModelParams, arrays: Mapping[str, np.ndarray]) -> CalibrationCandidate:
    """
    Predict, derive and grade every history game under `params`.

    A candidate with malformed or out-of-range values is returned rejected
    instead of raising, so one bad point never aborts the sweep.
    """
    try:
        params.validate()
    except ValueError as e:
        return CalibrationCandidate(params=params, rejected_reason=str(e))

    avg = params.league_avg_points

    def _stat(name: str) -> np.ndarray:
        values = arrays[name]
        return np.where(np.isnan(values), avg, values)

    home_extra, away_extra = _situational_extras(arrays, params)
    with np.errstate(invalid="ignore", over="ignore"):
        home_score, away_score = project_scores(
            arrays["home_rating"],
            arrays["away_rating"],
            _stat("home_points_for"),
            _stat("home_points_against"),
            _stat("away_points_for"),
            _stat("away_points_against"),
            params,
            home_extra,
            away_extra,
        )
        predicted_spread = spread_from_scores(home_score, away_score, params.spread_shrinkage)
        predicted_total = np.round(home_score + away_score, 2)
        probability = win_probability(arrays["home_rating"], arrays["away_rating"], params.home_rating_bonus)

    market_spread = arrays["market_spread"]
    market_total = arrays["market_total"]
    has_spread = ~np.isnan(market_spread)
    has_total = ~np.isnan(market_total)
    has_line = has_spread | has_total

    if not (np.all(np.isfinite(predicted_spread[has_spread])) and np.all(np.isfinite(predicted_total[has_total]))):
        return CalibrationCandidate(params=params, rejected_reason="projection produced non-finite values")

    # Only picks at or above each market's minimum edge are bet
    with np.errstate(invalid="ignore"):
        spread_bets = has_spread & (spread_edge(predicted_spread, market_spread) >= params.min_spread_edge)
        total_bets = has_total & (total_edge(predicted_total, market_total) >= params.min_total_edge)
        moneyline_bets = has_line & (moneyline_edge(probability) >= params.min_moneyline_edge)

    records = {
        SPREAD: MarketRecord.tally(
            spread_pick_sign(predicted_spread, market_spread),
            spread_outcome_sign(market_spread, arrays["actual_spread"]),
            valid=spread_bets,
        ),
        MONEYLINE: MarketRecord.tally(
            moneyline_pick_sign(probability),
            moneyline_outcome_sign(arrays["home_score"], arrays["away_score"]),
            valid=moneyline_bets,
            allow_push=False,
        ),
        TOTAL: MarketRecord.tally(
            total_pick_sign(predicted_total, market_total),
            total_outcome_sign(market_total, arrays["actual_total"]),
            valid=total_bets,
        ),
    }
    return CalibrationCandidate(params=params, records=records)


class ParameterCalibrator:
    """
    Ranks parameter sets by historical grading performance.

    Parameters
    ----------
    history:
        Output of build_calibration_history (must carry `season` when
        holdout seasons are configured).
    base_params:
        Values for every parameter the grid does not vary.
    config:
        Floor, bound, pool size, ranking and holdout settings.
    adjusters:
        Situational adjusters whose weights the grid may vary.
    """

    def __init__(
        self,
        history: pd.DataFrame,
        base_params: ModelParams,
        config: Optional[CalibrationConfig] = None,
        adjusters: Optional[Sequence[SituationalAdjuster]] = None,
    ) -> None:
        self.config = config or CalibrationConfig()
        self.base_params = base_params
        self.adjusters = list(adjusters) if adjusters is not None else default_adjusters()

        search, holdout = holdout_split(history, self.config.holdout_seasons)
        if search.empty:
            raise ValueError("Calibration history is empty after removing holdout seasons.")
        self.search_arrays = prepare_history_arrays(search, self.adjusters)
        self.holdout_arrays = (
            prepare_history_arrays(holdout, self.adjusters)
            if holdout is not None and not holdout.empty
            else None
        )

    def _evaluate_all(self, candidates: Iterator[ModelParams], arrays: Mapping[str, np.ndarray], size: int) -> List[CalibrationCandidate]:
        workers = self.config.max_workers
        if workers == 1 or size == 1:
            return [evaluate_candidate(p, arrays) for p in candidates]

        chunksize = max(1, size // ((workers or 4) * 8))
        with ProcessPoolExecutor(max_workers=workers) as executor:
            return list(
                executor.map(
                    evaluate_candidate,
                    candidates,
                    itertools.repeat(arrays),
                    chunksize=chunksize,
                )
            )

    def rank(self, candidates: Sequence[CalibrationCandidate]) -> Tuple[List[CalibrationCandidate], int]:
        """Drop rejected and under-sampled candidates; order the rest best first."""
        cfg = self.config
        eligible = [c for c in candidates if not c.rejected]
        kept = [c for c in eligible if c.record(cfg.rank_market).graded >= cfg.min_graded]
        kept.sort(key=lambda c: c.sort_key(cfg.rank_market, cfg.rank_metric))
        return kept, len(eligible) - len(kept)

    def run(self, grid: Mapping[str, Sequence[float]]) -> CalibrationReport:
        size = check_grid(grid, self.config.max_grid_size)
        logger.info("Calibrating %d candidates over %d games.", size, len(self.search_arrays["home_rating"]))

        evaluated = self._evaluate_all(iter_grid(self.base_params, grid), self.search_arrays, size)

        rejected = [c for c in evaluated if c.rejected]
        for cand in rejected:
            logger.warning("Rejected candidate %s: %s", cand.params.to_dict(), cand.rejected_reason)

        ranked, below_floor = self.rank(evaluated)
        if below_floor:
            logger.info(
                "%d candidate(s) below the %d graded-bet floor were dropped.",
                below_floor, self.config.min_graded,
            )
        ranked = ranked[: self.config.top_n]

        holdout = None
        if self.holdout_arrays is not None and ranked:
            holdout = [evaluate_candidate(c.params, self.holdout_arrays) for c in ranked]

        return CalibrationReport(
            ranked=ranked,
            rejected=rejected,
            below_floor=below_floor,
            evaluated=len(evaluated),
            holdout=holdout,
        )
