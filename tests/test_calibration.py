import numpy as np
import pandas as pd
import pytest

import sports_forecaster.evaluation.calibration as calibration
from sports_forecaster.data.feature_engineering.team_stats_pipeline import build_calibration_history
from sports_forecaster.data.loaders.feeds import FrameScheduleFeed
from sports_forecaster.data.preprocessing.base_dataset import prepare_history
from sports_forecaster.evaluation.backtest import BacktestRunner
from sports_forecaster.evaluation.calibration import (
    CalibrationConfig,
    ParameterCalibrator,
    check_grid,
    evaluate_candidate,
    grid_size,
    iter_grid,
    prepare_history_arrays,
)
from sports_forecaster.evaluation.grading import (
    MONEYLINE,
    SPREAD,
    TOTAL,
    MarketRecord,
    grade_moneyline,
    grade_spread,
    grade_total,
)
from sports_forecaster.models.predictor import (
    ModelParams,
    TeamSnapshot,
    derive_spread,
    derive_total,
    home_win_probability,
    predict_score,
)
from sports_forecaster.models.situational import apply_adjusters, context_from_row, default_adjusters

BASE = ModelParams(
    regression=0.3,
    rating_to_points=0.06,
    home_advantage=2.5,
    rating_cap=4.0,
    spread_shrinkage=0.5,
    league_avg_points=22.0,
    home_rating_bonus=48.0,
)


def _history(n: int = 60, seed: int = 7) -> pd.DataFrame:
    """
    Synthetic calibration history: ratings at game time, realized scores,
    half-point lines, pre-game scoring means (some missing) and rest days.
    """
    rng = np.random.default_rng(seed)
    df = pd.DataFrame(
        {
            "game_id": [f"g{i:03d}" for i in range(n)],
            "home_team": [f"H{i % 6}" for i in range(n)],
            "away_team": [f"A{i % 5}" for i in range(n)],
            "season": [2022 if i < n // 2 else 2023 for i in range(n)],
            "home_rating": rng.normal(1500, 60, n).round(1),
            "away_rating": rng.normal(1500, 60, n).round(1),
            "home_score": rng.integers(10, 38, n).astype(float),
            "away_score": rng.integers(10, 35, n).astype(float),
            "market_spread": (rng.integers(-20, 15, n) / 2.0),
            "market_total": (rng.integers(80, 100, n) / 2.0) + 0.5,
            "home_points_for_pre": rng.normal(22, 4, n).round(2),
            "home_points_against_pre": rng.normal(22, 4, n).round(2),
            "away_points_for_pre": rng.normal(22, 4, n).round(2),
            "away_points_against_pre": rng.normal(22, 4, n).round(2),
            "home_rest_days": rng.integers(0, 4, n).astype(float),
            "away_rest_days": rng.integers(0, 4, n).astype(float),
        }
    )
    # First appearances have no scoring history or rest yet
    df.loc[:3, ["home_points_for_pre", "home_points_against_pre", "home_rest_days"]] = np.nan
    # A few games without a spread or without a total
    df.loc[[5, 17], "market_spread"] = np.nan
    df.loc[[9], "market_total"] = np.nan
    return df


def _scalar_records(history: pd.DataFrame, params: ModelParams) -> dict:
    """Grade every history row one game at a time, the way the backtest does."""

    def _opt(value):
        return None if pd.isna(value) else float(value)

    records = {SPREAD: MarketRecord(), MONEYLINE: MarketRecord(), TOTAL: MarketRecord()}
    for _, row in history.iterrows():
        adjustments = apply_adjusters(context_from_row(row), params, default_adjusters())
        home = TeamSnapshot(row["home_rating"], _opt(row["home_points_for_pre"]), _opt(row["home_points_against_pre"]))
        away = TeamSnapshot(row["away_rating"], _opt(row["away_points_for_pre"]), _opt(row["away_points_against_pre"]))
        projection = predict_score(home, away, params, adjustments)
        spread = derive_spread(projection, params.spread_shrinkage)
        total = round(derive_total(projection), 2)
        p = home_win_probability(row["home_rating"], row["away_rating"], params.home_rating_bonus)

        actual_spread = row["away_score"] - row["home_score"]
        actual_total = row["home_score"] + row["away_score"]
        market_spread = _opt(row["market_spread"])
        market_total = _opt(row["market_total"])

        if market_spread is not None and abs(spread - market_spread) >= params.min_spread_edge:
            grade = grade_spread(spread, market_spread, actual_spread)
            records[SPREAD].add(grade.verdict if grade else None)
        if market_spread is not None or market_total is not None:
            if abs(p - 0.5) * 100.0 >= params.min_moneyline_edge:
                grade = grade_moneyline(p, row["home_score"], row["away_score"])
                records[MONEYLINE].add(grade.verdict if grade else None)
        if market_total is not None and abs(total - market_total) >= params.min_total_edge:
            records[TOTAL].add(grade_total(total, market_total, actual_total).verdict)
    return records


# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------


def test_iter_grid_is_the_cartesian_product():
    grid = {"regression": [0.2, 0.3, 0.4], "spread_shrinkage": [0.4, 0.5]}

    candidates = list(iter_grid(BASE, grid))

    assert grid_size(grid) == 6
    assert len(candidates) == 6
    assert {(c.regression, c.spread_shrinkage) for c in candidates} == {
        (r, s) for r in grid["regression"] for s in grid["spread_shrinkage"]
    }
    # Parameters outside the grid keep the base value
    assert all(c.home_advantage == 2.5 for c in candidates)


def test_check_grid_rejects_unknown_and_empty_parameters():
    with pytest.raises(ValueError):
        check_grid({"pace_factor": [1.0]})
    with pytest.raises(ValueError):
        check_grid({"regression": []})
    with pytest.raises(ValueError):
        check_grid({})


def test_oversized_grid_fails_before_any_evaluation(monkeypatch):
    def _should_not_run(*args, **kwargs):
        raise AssertionError("candidate evaluated")

    monkeypatch.setattr(calibration, "evaluate_candidate", _should_not_run)
    calibrator = ParameterCalibrator(_history(), BASE, CalibrationConfig(max_grid_size=4, max_workers=1))

    with pytest.raises(ValueError, match="above the limit"):
        calibrator.run({"regression": [0.2, 0.3, 0.4], "home_advantage": [2.0, 3.0]})


def test_config_validation():
    with pytest.raises(ValueError):
        CalibrationConfig(rank_market="parlay")
    with pytest.raises(ValueError):
        CalibrationConfig(rank_metric="sharpe")
    with pytest.raises(ValueError):
        CalibrationConfig(min_graded=-1)


# ---------------------------------------------------------------------------
# Candidate evaluation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "params",
    [
        BASE,
        BASE.with_values(rest_weight=2.0),
        BASE.with_values(regression=0.0, rating_cap=0.0, spread_shrinkage=0.0),
        BASE.with_values(min_spread_edge=1.5, min_total_edge=3.3, min_moneyline_edge=5.0),
    ],
)
def test_vectorized_grading_matches_per_game_grading(params):
    history = _history()
    candidate = evaluate_candidate(params, prepare_history_arrays(history))

    assert not candidate.rejected
    assert candidate.records == _scalar_records(history, params)


def test_missing_lines_are_not_graded():
    history = _history()
    candidate = evaluate_candidate(BASE, prepare_history_arrays(history))

    assert candidate.record(SPREAD).graded <= len(history) - 2
    assert candidate.record(TOTAL).graded == len(history) - 1


def test_rest_contributions_scale_with_weight():
    history = _history().iloc[4:6].reset_index(drop=True)
    history.loc[0, ["home_rest_days", "away_rest_days"]] = [0, 2]

    arrays = prepare_history_arrays(history)

    # Back-to-back against two days' rest at unit weight
    assert arrays["rest_weight:home"][0] == pytest.approx(-1.25)
    assert arrays["rest_weight:away"][0] == pytest.approx(1.25)


def test_edge_thresholds_only_count_picks_that_clear_them():
    arrays = prepare_history_arrays(_history())

    graded = [
        evaluate_candidate(BASE.with_values(min_spread_edge=edge), arrays).record(SPREAD).graded
        for edge in (0.0, 1.0, 2.5, 5.0, 1000.0)
    ]

    assert graded == sorted(graded, reverse=True)
    assert graded[0] > graded[-1] == 0

    # Other markets are untouched by the spread threshold
    wide = evaluate_candidate(BASE.with_values(min_spread_edge=1000.0), arrays)
    base = evaluate_candidate(BASE, arrays)
    assert wide.record(TOTAL) == base.record(TOTAL)
    assert wide.record(MONEYLINE) == base.record(MONEYLINE)


def test_edge_thresholds_are_searchable_grid_dimensions():
    calibrator = ParameterCalibrator(_history(), BASE, CalibrationConfig(min_graded=0, max_workers=1))

    report = calibrator.run({"min_total_edge": [0.0, 2.0], "min_moneyline_edge": [0.0, 10.0]})

    assert report.evaluated == 4
    assert not report.rejected
    by_params = {(c.params.min_total_edge, c.params.min_moneyline_edge): c for c in report.ranked}
    assert by_params[(2.0, 0.0)].record(TOTAL).graded <= by_params[(0.0, 0.0)].record(TOTAL).graded
    assert by_params[(0.0, 10.0)].record(MONEYLINE).graded <= by_params[(0.0, 0.0)].record(MONEYLINE).graded
    assert "min_total_edge" in report.to_frame().columns


def test_invalid_candidate_is_rejected_not_raised():
    candidate = evaluate_candidate(BASE.with_values(regression=1.5), prepare_history_arrays(_history()))

    assert candidate.rejected
    assert "regression" in candidate.rejected_reason
    assert candidate.records == {}


def test_history_requires_ratings_and_scores():
    with pytest.raises(KeyError):
        prepare_history_arrays(_history().drop(columns=["home_rating"]))


# ---------------------------------------------------------------------------
# Calibrator
# ---------------------------------------------------------------------------


def test_ranked_best_first_and_rejects_reported():
    calibrator = ParameterCalibrator(_history(), BASE, CalibrationConfig(min_graded=0, max_workers=1))

    report = calibrator.run({"regression": [0.1, 0.3, 0.5, 1.5], "spread_shrinkage": [0.3, 0.6]})

    assert report.evaluated == 8
    assert len(report.rejected) == 2
    assert all(c.params.regression == 1.5 for c in report.rejected)
    assert len(report.ranked) == 6
    keys = [c.sort_key(SPREAD, "win_pct") for c in report.ranked]
    assert keys == sorted(keys)
    assert report.best is report.ranked[0]

    frame = report.to_frame()
    assert len(frame) == 6
    assert {"regression", "spread_win_pct", "spread_roi", "total_graded"} <= set(frame.columns)


def test_graded_floor_drops_small_samples():
    calibrator = ParameterCalibrator(_history(), BASE, CalibrationConfig(min_graded=10_000, max_workers=1))

    report = calibrator.run({"regression": [0.2, 0.3]})

    assert report.ranked == []
    assert report.below_floor == 2
    assert report.best is None


def test_holdout_rescoring():
    history = _history()
    config = CalibrationConfig(min_graded=0, max_workers=1, holdout_seasons=(2023,), top_n=3)
    calibrator = ParameterCalibrator(history, BASE, config)

    report = calibrator.run({"regression": [0.1, 0.2, 0.3, 0.4]})

    assert len(report.ranked) == 3
    assert [c.params for c in report.holdout] == [c.params for c in report.ranked]
    holdout_games = int((history["season"] == 2023).sum())
    assert all(c.record(TOTAL).graded <= holdout_games for c in report.holdout)
    assert len(calibrator.search_arrays["home_rating"]) == len(history) - holdout_games


def test_parallel_matches_sequential():
    grid = {"regression": [0.1, 0.3], "home_advantage": [1.5, 2.5, 3.5]}
    history = _history()

    sequential = ParameterCalibrator(history, BASE, CalibrationConfig(min_graded=0, max_workers=1)).run(grid)
    parallel = ParameterCalibrator(history, BASE, CalibrationConfig(min_graded=0, max_workers=2)).run(grid)

    assert [(c.params, c.records) for c in parallel.ranked] == [(c.params, c.records) for c in sequential.ranked]


def test_calibrates_from_backtest_results(nba_games, state_store, nba_policy):
    runner = BacktestRunner("nba", FrameScheduleFeed(nba_games), store=state_store, conviction_policy=nba_policy)
    runner.run()

    history = build_calibration_history(runner.results_frame(), prepare_history(nba_games))
    assert history["game_id"].tolist() == ["g1", "g2"]

    base = ModelParams.for_sport(runner.profile)
    report = ParameterCalibrator(history, base, CalibrationConfig(min_graded=0, max_workers=1)).run(
        {"spread_shrinkage": [0.4, 0.5]}
    )
    assert len(report.ranked) == 2
    assert all(c.record(MONEYLINE).graded == 2 for c in report.ranked)

    # The sport defaults reproduce the backtest's own spread record
    replay = evaluate_candidate(base, prepare_history_arrays(history))
    assert replay.record(SPREAD) == runner.load_state().summary.spread
