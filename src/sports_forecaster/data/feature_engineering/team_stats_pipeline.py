from __future__ import annotations

"""
Leak-free per-team pre-game statistics.

Input is the chronologically indexed history produced by
`sports_forecaster.data.preprocessing.base_dataset.prepare_history`
(one row per completed game, global `game_index`). For every game this adds
what each side's scoring profile and rest looked like BEFORE kickoff, then
joins that onto persisted backtest results to form the calibration history.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .rolling_features import RollingSpec, add_rolling_features, feature_name


@dataclass
class TeamStatsConfig:
    """
    Attributes
    ----------
    per_season:
        If True, scoring means restart every season; otherwise they run over
        the whole history, matching a RatingStore without season carryover.
    min_games:
        Minimum prior games before a mean is reported (else NaN, which the
        predictor treats as league average).
    max_rest_days:
        Cap on reported rest days.
    """

    per_season: bool = False
    min_games: int = 1
    max_rest_days: int = 7


PREGAME_COLUMNS = [
    "home_points_for_pre",
    "home_points_against_pre",
    "away_points_for_pre",
    "away_points_against_pre",
    "home_rest_days",
    "away_rest_days",
]

# Optional per-game columns the situational adjusters read
SITUATIONAL_COLUMNS = [
    "temperature",
    "wind_speed",
    "precipitation",
    "is_indoor",
    "home_key_players_out",
    "away_key_players_out",
]


def build_team_long(games: pd.DataFrame) -> pd.DataFrame:
    """
    Expand one-row-per-game history into two rows per game (one per team).

    Adds: team, opponent, is_home, points_for, points_against, point_diff.
    """
    required = ["game_id", "game_index", "gameday", "home_team", "away_team", "home_score", "away_score"]
    missing = [c for c in required if c not in games.columns]
    if missing:
        raise KeyError(f"Games history missing required columns: {missing}")

    keep = ["game_id", "game_index", "gameday"] + (["season"] if "season" in games.columns else [])

    home = games[keep].copy()
    home["team"] = games["home_team"]
    home["opponent"] = games["away_team"]
    home["is_home"] = True
    home["points_for"] = games["home_score"].astype(float)
    home["points_against"] = games["away_score"].astype(float)

    away = games[keep].copy()
    away["team"] = games["away_team"]
    away["opponent"] = games["home_team"]
    away["is_home"] = False
    away["points_for"] = games["away_score"].astype(float)
    away["points_against"] = games["home_score"].astype(float)

    team_df = pd.concat([home, away], ignore_index=True)
    team_df["point_diff"] = team_df["points_for"] - team_df["points_against"]
    return team_df


def _add_rest_days(team_df: pd.DataFrame, max_rest_days: int) -> pd.DataFrame:
    df = team_df.sort_values(["team", "game_index"]).copy()
    days = df.groupby("team")["gameday"].diff().dt.days
    # Full days off between games: back-to-back = 0
    df["rest_days"] = (days - 1).clip(lower=0, upper=max_rest_days)
    return df.loc[team_df.index]


def build_team_pregame_stats(games: pd.DataFrame, config: TeamStatsConfig | None = None) -> pd.DataFrame:
    """Team-long frame with expanding pre-game scoring means and rest days."""
    if config is None:
        config = TeamStatsConfig()

    team_df = build_team_long(games)
    group_cols = ["team", "season"] if config.per_season and "season" in team_df.columns else ["team"]

    specs = [
        RollingSpec(col="points_for", windows=(None,), min_periods=config.min_games),
        RollingSpec(col="points_against", windows=(None,), min_periods=config.min_games),
    ]
    team_df = add_rolling_features(team_df, group_cols=group_cols, time_col="game_index", specs=specs)
    team_df = team_df.rename(
        columns={
            feature_name(specs[0], "mean", None): "points_for_pre",
            feature_name(specs[1], "mean", None): "points_against_pre",
        }
    )
    return _add_rest_days(team_df, config.max_rest_days)


def build_game_pregame_features(games: pd.DataFrame, config: TeamStatsConfig | None = None) -> pd.DataFrame:
    """One row per game with home_*/away_* pre-game scoring means and rest days."""
    team_df = build_team_pregame_stats(games, config)
    cols = ["points_for_pre", "points_against_pre", "rest_days"]

    home = team_df[team_df["is_home"]][["game_id"] + cols].rename(columns={c: f"home_{c}" for c in cols})
    away = team_df[~team_df["is_home"]][["game_id"] + cols].rename(columns={c: f"away_{c}" for c in cols})
    return home.merge(away, on="game_id", how="inner", validate="one_to_one")


def build_calibration_history(
    results: pd.DataFrame,
    games: pd.DataFrame,
    config: TeamStatsConfig | None = None,
) -> pd.DataFrame:
    """
    Join persisted backtest results (ratings at time of game, market lines,
    realized scores) with leak-free pre-game team stats.

    Only results carrying a market spread or total are kept: the calibrator
    grades against lines, and a game without one can never be graded.
    """
    required = ["game_id", "home_rating", "away_rating", "home_score", "away_score"]
    missing = [c for c in required if c not in results.columns]
    if missing:
        raise KeyError(f"Backtest results missing required columns: {missing}")

    features = build_game_pregame_features(games, config)
    context_cols = [c for c in ["gameday"] + SITUATIONAL_COLUMNS if c in games.columns]
    if "season" in games.columns and "season" not in results.columns:
        context_cols.append("season")
    features = features.merge(games[["game_id"] + context_cols], on="game_id", how="left")

    history = results.merge(features, on="game_id", how="left", validate="one_to_one")

    has_line = pd.Series(False, index=history.index)
    for col in ("market_spread", "market_total"):
        if col in history.columns:
            has_line |= history[col].notnull()
    history = history[has_line].copy()

    # Chronological by game time, ties by game_id
    if "game_time" in history.columns:
        history = history.assign(_order=history["game_time"].fillna("").astype(str))
        history = history.sort_values(["_order", "game_id"], kind="mergesort").drop(columns="_order")
    history = history.reset_index(drop=True)

    for col in PREGAME_COLUMNS:
        if col not in history.columns:
            history[col] = np.nan
    return history
