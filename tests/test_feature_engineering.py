import numpy as np
import pandas as pd
import pytest

from conftest import make_games
from sports_forecaster.data.feature_engineering.rolling_features import (
    RollingSpec,
    add_rolling_features,
)
from sports_forecaster.data.feature_engineering.team_stats_pipeline import (
    PREGAME_COLUMNS,
    TeamStatsConfig,
    build_calibration_history,
    build_game_pregame_features,
    build_team_long,
    build_team_pregame_stats,
)
from sports_forecaster.data.preprocessing.base_dataset import prepare_history


# ---------------------------------------------------------------------------
# Helpers for synthetic histories
# ---------------------------------------------------------------------------


def _make_single_matchup_history() -> pd.DataFrame:
    """
    One matchup repeated to reason about timing.

    Game setup:
        Game 1: A (home) vs B       (2023-09-10)
        Game 2: B (home) vs A       (2023-09-17)
        Game 3: A (home) vs B       (2023-09-24)
    """
    return prepare_history(
        make_games(
            [
                ("g1", "2023-09-10", "A", "B", "final", 10, 7, -3.5, 42.5),
                ("g2", "2023-09-17", "B", "A", "final", 20, 14, -4.5, 43.5),
                ("g3", "2023-09-24", "A", "B", "final", 30, 21, -6.5, 44.5),
            ]
        )
    )


def _make_asymmetric_rest_history() -> pd.DataFrame:
    """
    Asymmetric rest before g3.

    Games:
        g1: A vs C on 2024-01-01
        g2: B vs D on 2024-01-03
        g3: A vs B on 2024-01-04  (A had 2 days off, B none)
    """
    return prepare_history(
        make_games(
            [
                ("g1", "2024-01-01", "A", "C", "final", 101, 99, -1.5, 210.5),
                ("g2", "2024-01-03", "B", "D", "final", 95, 90, -3.0, 201.0),
                ("g3", "2024-01-04", "A", "B", "final", 110, 104, -2.5, 215.0),
            ]
        )
    )


# ---------------------------------------------------------------------------
# 1) Rolling logic / timing (pure rolling_features)
# ---------------------------------------------------------------------------


def test_feature_timing_basic_rolling():
    """
    add_rolling_features should use only strictly prior rows in the window.

    Construct a single team with linearly increasing values and verify
    that the rolling mean at each step uses only previous games.
    """
    df = pd.DataFrame(
        {
            "team": ["X"] * 5,
            "season": [2023] * 5,
            "game_index": [0, 1, 2, 3, 4],
            "value": [10, 20, 30, 40, 50],
        }
    )

    spec = RollingSpec(col="value", windows=[3], stats=("mean",), min_periods=1, prefix="value")

    out = add_rolling_features(df, group_cols=["team", "season"], time_col="game_index", specs=[spec])

    col = "value_rolling_mean_3"
    assert col in out.columns

    # game 0: NaN (no prior games); game 4: mean([20, 30, 40])
    expected = [np.nan, 10.0, 15.0, 20.0, 30.0]
    actual = out[col].tolist()

    assert np.isnan(actual[0])
    assert actual[1:] == pytest.approx(expected[1:], rel=1e-6)


def test_expanding_window():
    df = pd.DataFrame({"team": ["X"] * 4, "game_index": [3, 0, 2, 1], "value": [40, 10, 30, 20]})
    spec = RollingSpec(col="value", windows=[None], stats=("mean", "max"))

    out = add_rolling_features(df, group_cols=["team"], time_col="game_index", specs=[spec])

    # Original row order is preserved
    assert out["game_index"].tolist() == [3, 0, 2, 1]
    assert out["value_expanding_mean"].tolist()[0] == pytest.approx(20.0)
    assert np.isnan(out["value_expanding_mean"].tolist()[1])
    assert out["value_expanding_max"].tolist()[2] == 20


def test_rolling_spec_validation():
    df = pd.DataFrame({"team": ["X"], "game_index": [0], "value": [1.0]})
    with pytest.raises(KeyError):
        add_rolling_features(df, ["team"], "game_index", [RollingSpec(col="missing", windows=[2])])
    with pytest.raises(ValueError):
        add_rolling_features(df, ["team"], "game_index", [RollingSpec(col="value", windows=[2], stats=("median",))])
    with pytest.raises(ValueError):
        add_rolling_features(df, [], "game_index", [RollingSpec(col="value", windows=[2])])


# ---------------------------------------------------------------------------
# 2) Team-long and game-level shapes
# ---------------------------------------------------------------------------


def test_team_and_game_shapes():
    history = _make_single_matchup_history()

    team_df = build_team_long(history)
    assert len(team_df) == len(history) * 2
    assert team_df["is_home"].sum() == len(history)

    game_df = build_game_pregame_features(history)
    assert len(game_df) == len(history)
    for col in PREGAME_COLUMNS:
        assert col in game_df.columns


def test_team_long_requires_game_index():
    with pytest.raises(KeyError):
        build_team_long(_make_single_matchup_history().drop(columns=["game_index"]))


# ---------------------------------------------------------------------------
# 3) Leakage
# ---------------------------------------------------------------------------


def test_no_future_information_for_team_points():
    """Team A's pre-game scoring mean only sees games already played."""
    team_df = build_team_pregame_stats(_make_single_matchup_history())
    team_a = team_df[team_df["team"] == "A"].sort_values("game_index")

    assert team_a["points_for"].tolist() == [10, 14, 30]

    vals = team_a["points_for_pre"].tolist()
    assert np.isnan(vals[0])
    assert vals[1:] == pytest.approx([10.0, 12.0], rel=1e-6)


def test_home_away_alignment_correct():
    game_df = build_game_pregame_features(_make_single_matchup_history())
    row_g2 = game_df[game_df["game_id"] == "g2"].iloc[0]

    # g2 home is B: scored 7 / allowed 10 in g1
    assert row_g2["home_points_for_pre"] == pytest.approx(7.0)
    assert row_g2["home_points_against_pre"] == pytest.approx(10.0)
    assert row_g2["away_points_for_pre"] == pytest.approx(10.0)


def test_per_season_means_restart():
    games = make_games(
        [
            ("p1", "2023-03-01", "A", "B", "final", 100, 90, -2.0, 200.0),
            ("p2", "2023-11-01", "A", "B", "final", 80, 70, -2.0, 200.0),
        ]
    )
    games["season"] = [2022, 2023]
    history = prepare_history(games)

    carried = build_game_pregame_features(history, TeamStatsConfig(per_season=False))
    restarted = build_game_pregame_features(history, TeamStatsConfig(per_season=True))

    assert carried.set_index("game_id").loc["p2", "home_points_for_pre"] == pytest.approx(100.0)
    assert np.isnan(restarted.set_index("game_id").loc["p2", "home_points_for_pre"])


def test_rest_days():
    game_df = build_game_pregame_features(_make_asymmetric_rest_history()).set_index("game_id")

    assert game_df.loc["g3", "home_rest_days"] == 2
    assert game_df.loc["g3", "away_rest_days"] == 0
    assert np.isnan(game_df.loc["g1", "home_rest_days"])


def test_rest_days_capped():
    history = _make_single_matchup_history()
    game_df = build_game_pregame_features(history, TeamStatsConfig(max_rest_days=3)).set_index("game_id")
    assert game_df.loc["g2", "home_rest_days"] == 3


# ---------------------------------------------------------------------------
# 4) Calibration history
# ---------------------------------------------------------------------------


def _results_for(history: pd.DataFrame) -> pd.DataFrame:
    results = history[["game_id", "home_team", "away_team", "home_score", "away_score", "market_spread", "market_total"]].copy()
    results["home_rating"] = 1500.0
    results["away_rating"] = 1500.0
    results["game_time"] = history["gameday"].dt.strftime("%Y-%m-%dT%H:%M:%S")
    return results


def test_calibration_history_joins_pregame_stats():
    history = _make_asymmetric_rest_history()
    results = _results_for(history).iloc[::-1]

    calib = build_calibration_history(results, history)

    assert calib["game_id"].tolist() == ["g1", "g2", "g3"]
    assert calib["season"].tolist() == [2023, 2023, 2023]
    row = calib.set_index("game_id").loc["g3"]
    assert row["home_points_for_pre"] == pytest.approx(101.0)
    assert row["home_rest_days"] == 2


def test_calibration_history_drops_games_without_lines():
    history = _make_asymmetric_rest_history()
    results = _results_for(history)
    results.loc[results["game_id"] == "g2", ["market_spread", "market_total"]] = np.nan
    results.loc[results["game_id"] == "g3", "market_total"] = np.nan

    calib = build_calibration_history(results, history)

    assert calib["game_id"].tolist() == ["g1", "g3"]


def test_calibration_history_requires_ratings():
    history = _make_asymmetric_rest_history()
    with pytest.raises(KeyError):
        build_calibration_history(_results_for(history).drop(columns=["home_rating"]), history)
