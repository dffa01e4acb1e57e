import pandas as pd
import pytest

from conftest import make_games
from sports_forecaster.data.preprocessing.base_dataset import (
    BaseDatasetConfig,
    add_season,
    build_base_dataset,
    completed_games,
    prepare_history,
    sort_chronologically,
    validate_games,
)
from sports_forecaster.evaluation.splits import holdout_split, split_by_season


def _multi_season_games() -> pd.DataFrame:
    """
    Games across two NBA-style seasons, deliberately out of order.

    Season 2022: s1 (2022-11-01), s2 (2023-02-01)
    Season 2023: s3 (2023-10-30), s4 (2023-10-30, same day as s3)
    """
    games = make_games(
        [
            ("s3", "2023-10-30", "A", "B", "final", 100, 98, -2.0, 210.0),
            ("s1", "2022-11-01", "A", "B", "final", 90, 99, -1.0, 205.0),
            ("s4", "2023-10-30", "C", "D", "final", 111, 101, -6.5, 221.5),
            ("s2", "2023-02-01", "B", "A", "final", 95, 97, 1.5, 200.0),
        ]
    )
    return games.drop(columns=["season"])


def test_validate_games_checks_columns_and_dtypes(nba_games):
    validate_games(nba_games)

    with pytest.raises(ValueError):
        validate_games(nba_games.drop(columns=["home_score"]))
    with pytest.raises(ValueError):
        validate_games(nba_games.iloc[0:0])
    with pytest.raises(TypeError):
        validate_games(nba_games.assign(gameday=nba_games["gameday"].astype(str)))


def test_add_season_from_gameday():
    df = add_season(_multi_season_games())
    assert dict(zip(df["game_id"], df["season"])) == {"s1": 2022, "s2": 2022, "s3": 2023, "s4": 2023}


def test_completed_games_drops_unscored_finals(nba_games, caplog):
    with caplog.at_level("WARNING"):
        completed = completed_games(nba_games)

    assert completed["game_id"].tolist() == ["g1", "g2", "g3"]
    assert "g4" in caplog.text


def test_completed_games_rejects_duplicates(nba_games):
    with pytest.raises(ValueError):
        completed_games(pd.concat([nba_games, nba_games.iloc[[0]]], ignore_index=True))


def test_sort_chronologically_breaks_ties_by_game_id():
    df = sort_chronologically(_multi_season_games())

    assert df["game_id"].tolist() == ["s1", "s2", "s3", "s4"]
    assert df["game_index"].tolist() == [0, 1, 2, 3]


def test_prepare_history():
    df = prepare_history(_multi_season_games())

    # Completed games only
    assert df["home_score"].notnull().all()
    assert df["away_score"].notnull().all()

    # game_index should be 0..N-1
    assert df["game_index"].min() == 0
    assert df["game_index"].max() == len(df) - 1

    # No duplicate game_ids
    assert df["game_id"].is_unique

    # gameday should be non-decreasing (ties allowed)
    gamedates = df["gameday"].values
    for i in range(len(gamedates) - 1):
        assert gamedates[i] <= gamedates[i + 1], (
            f"Games out of chronological order: {gamedates[i]} > {gamedates[i + 1]}"
        )


def test_split_by_season_no_overlap():
    """split_by_season should create non-overlapping splits."""
    df = prepare_history(_multi_season_games())

    train_df, val_df, test_df = split_by_season(df, train_seasons=[2022], val_seasons=[2023])

    assert set(train_df["season"]) == {2022}
    assert set(val_df["season"]) == {2023}
    assert test_df is None
    assert not (set(train_df["game_id"]) & set(val_df["game_id"])), "Train/Val splits share game_ids."

    with pytest.raises(ValueError):
        split_by_season(df, train_seasons=[2022], val_seasons=[2022])


def test_holdout_split():
    df = prepare_history(_multi_season_games())

    search, holdout = holdout_split(df, [2023])
    assert search["game_id"].tolist() == ["s1", "s2"]
    assert holdout["game_id"].tolist() == ["s3", "s4"]
    assert search["gameday"].max() <= holdout["gameday"].min()

    everything, none = holdout_split(df, [])
    assert len(everything) == len(df)
    assert none is None


def test_holdout_split_needs_season():
    with pytest.raises(ValueError):
        holdout_split(_multi_season_games(), [2023])


@pytest.mark.integration
def test_build_base_dataset_basic():
    """Base dataset should load, filter, and sort correctly (live nfl_data_py)."""
    config = BaseDatasetConfig(seasons=[2023], include_markets=True, drop_preseason=True, save_parquet=False)
    df = build_base_dataset(config)

    assert len(df) > 0
    for col in ["game_id", "season", "gameday", "home_team", "away_team", "market_spread", "game_index"]:
        assert col in df.columns, f"Missing column in base dataset: {col}"
    assert (df["status"] == "final").all()
    assert df["game_id"].is_unique
