from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from sports_forecaster.evaluation.conviction import load_conviction_policy
from sports_forecaster.storage.state_store import StateStore

CONVICTION_DIR = Path(__file__).resolve().parents[1] / "config" / "conviction"


@pytest.fixture
def mock_games_data() -> pd.DataFrame:
    """Mock nfl_data_py schedules for unit tests (no live API calls)."""
    return pd.DataFrame(
        {
            "game_id": ["2023_01_DET_KC", "2023_01_BUF_NYJ", "2023_02_KC_JAX"],
            "season": [2023, 2023, 2023],
            "game_type": ["REG", "REG", "REG"],
            "week": [1, 1, 2],
            "gameday": ["2023-09-07", "2023-09-11", "2023-09-17"],
            "gametime": ["20:20", "20:15", "13:00"],
            "home_team": ["KC", "NYJ", "JAX"],
            "away_team": ["DET", "BUF", "KC"],
            "home_score": [20, 22, np.nan],
            "away_score": [21, 16, np.nan],
            "stadium": ["GEHA Field at Arrowhead Stadium", "MetLife Stadium", "EverBank Stadium"],
            # nflverse quotes spread_line as points the home side is favored by
            "spread_line": [6.5, -2.5, -3.5],
            "total_line": [54.5, 45.5, 51.5],
            "roof": ["outdoors", "outdoors", "dome"],
            "temp": [81.0, 70.0, np.nan],
            "wind": [8.0, 5.0, np.nan],
        }
    )


def make_games(rows) -> pd.DataFrame:
    """
    Canonical games frame from (game_id, gameday, home, away, status,
    home_score, away_score, market_spread, market_total) tuples.
    """
    columns = [
        "game_id",
        "gameday",
        "home_team",
        "away_team",
        "status",
        "home_score",
        "away_score",
        "market_spread",
        "market_total",
    ]
    df = pd.DataFrame(rows, columns=columns)
    df["gameday"] = pd.to_datetime(df["gameday"])
    for col in ["home_score", "away_score", "market_spread", "market_total"]:
        df[col] = df[col].astype(float)
    df["season"] = 2023
    return df


@pytest.fixture
def nba_games() -> pd.DataFrame:
    """
    Five NBA games:
        g1, g2: final with lines
        g3: final, no market line
        g4: marked final but no score (data-quality skip)
        g5: scheduled
    """
    return make_games(
        [
            ("g1", "2024-01-01", "BOS", "NYK", "final", 110, 100, -4.0, 215.0),
            ("g2", "2024-01-02", "LAL", "BOS", "final", 105, 108, -2.0, 220.0),
            ("g3", "2024-01-03", "NYK", "LAL", "final", 99, 101, None, None),
            ("g4", "2024-01-04", "BOS", "LAL", "final", None, None, -5.0, 218.0),
            ("g5", "2024-01-06", "NYK", "BOS", "scheduled", None, None, 8.0, 212.0),
        ]
    )


@pytest.fixture
def state_store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "state")


@pytest.fixture
def nba_policy():
    return load_conviction_policy("nba", CONVICTION_DIR)


@pytest.fixture
def nfl_policy():
    return load_conviction_policy("nfl", CONVICTION_DIR)
