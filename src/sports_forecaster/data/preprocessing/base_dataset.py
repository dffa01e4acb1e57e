from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pandas as pd

from sports_forecaster.config import DATA_CONFIG
from sports_forecaster.data.loaders.feeds import STATUS_FINAL

logger = logging.getLogger(__name__)

# Games before this month belong to the season that started the previous year
SEASON_START_MONTH = 8


@dataclass
class BaseDatasetConfig:
    """
    Configuration for building the NFL history table.

    Attributes:
        seasons: List of seasons to include in the dataset.
        include_markets: Whether to keep market_spread / market_total.
        drop_preseason: If True, drop preseason games.
        save_parquet: If True, save the resulting dataset to data/processed/.
        filename: Optional custom filename for the saved dataset.
    """

    seasons: List[int]
    include_markets: bool = True
    drop_preseason: bool = True
    save_parquet: bool = True
    filename: Optional[str] = None


def validate_games(df: pd.DataFrame) -> None:
    """Basic validation for a canonical games DataFrame."""
    if df is None or len(df) == 0:
        raise ValueError("No games to validate.")

    required_cols = [
        "game_id",
        "gameday",
        "home_team",
        "away_team",
        "status",
        "home_score",
        "away_score",
    ]
    missing = [c for c in required_cols if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns in games data: {missing}")

    if not pd.api.types.is_datetime64_any_dtype(df["gameday"]):
        raise TypeError(
            f"Column 'gameday' must be datetime64; got dtype {df['gameday'].dtype}"
        )


def add_season(df: pd.DataFrame, start_month: int = SEASON_START_MONTH) -> pd.DataFrame:
    """Derive `season` from gameday where the feed does not provide one."""
    df = df.copy()
    derived = df["gameday"].dt.year - (df["gameday"].dt.month < start_month).astype(int)
    if "season" in df.columns:
        df["season"] = df["season"].fillna(derived).astype(int)
    else:
        df["season"] = derived.astype(int)
    return df


def completed_games(df: pd.DataFrame) -> pd.DataFrame:
    """
    Final games with both scores present.

    A game marked final without a score is a data-quality error: it is logged
    and dropped, never filled in.
    """
    finals = df[df["status"] == STATUS_FINAL]
    has_scores = finals["home_score"].notnull() & finals["away_score"].notnull()
    missing = finals.loc[~has_scores, "game_id"].tolist()
    if missing:
        logger.warning(
            "Skipping %d final game(s) with no realized score: %s",
            len(missing), ", ".join(map(str, missing[:10])),
        )

    completed = finals[has_scores].copy()

    duplicates = completed[completed.duplicated(subset=["game_id"], keep=False)]
    if not duplicates.empty:
        raise ValueError(
            f"Found {len(duplicates)} duplicate game_ids among completed games. "
            "Check data source for errors."
        )
    return completed


def sort_chronologically(df: pd.DataFrame) -> pd.DataFrame:
    """Sort by gameday then game_id and assign game_index = 0..N-1 in time order."""
    sort_cols = [c for c in ["gameday", "game_id"] if c in df.columns]
    out = df.sort_values(sort_cols, kind="mergesort").reset_index(drop=True)
    out["game_index"] = out.index
    return out


def prepare_history(games: pd.DataFrame) -> pd.DataFrame:
    """Validated, completed, chronologically ordered games with a season column."""
    validate_games(games)
    return sort_chronologically(add_season(completed_games(games)))


def build_base_dataset(config: Optional[BaseDatasetConfig] = None) -> pd.DataFrame:
    """
    Build the NFL history table from nfl_data_py.

    Steps:
        1. Load games via NflGameLoader.
        2. Validate structure (columns, dtypes).
        3. Keep completed games (final with both scores).
        4. Optionally drop preseason games.
        5. Sort chronologically and assign game_index.
        6. Optionally save to data/processed.
    """
    # nfl_data_py is only needed for live loads
    from sports_forecaster.data.loaders.games import NflGameLoader, NflGameLoaderConfig

    if config is None:
        config = BaseDatasetConfig(seasons=DATA_CONFIG.default_seasons)

    loader = NflGameLoader(
        NflGameLoaderConfig(
            seasons=config.seasons,
            include_markets=config.include_markets,
            save_parquet=False,
        )
    )
    df = loader.load()

    if config.drop_preseason and "game_type" in df.columns:
        df = df[df["game_type"].astype(str).str.upper() != "PRE"]

    completed = prepare_history(df)
    if completed.empty:
        raise ValueError(f"No completed games found for seasons {config.seasons}")

    if config.save_parquet:
        DATA_CONFIG.processed_data_dir.mkdir(parents=True, exist_ok=True)
        start_season = min(config.seasons)
        end_season = max(config.seasons)
        filename = config.filename or f"base_games_{start_season}_{end_season}.parquet"
        completed.to_parquet(DATA_CONFIG.processed_data_dir / filename, index=False)

    return completed


def load_base_dataset(
    start_season: int,
    end_season: int,
    processed_dir: Optional[Path] = None,
) -> pd.DataFrame:
    """
    Load a previously built base dataset from parquet.

    Raises:
        FileNotFoundError: If dataset hasn't been built yet
        ValueError: If required columns are missing
    """
    if processed_dir is None:
        processed_dir = DATA_CONFIG.processed_data_dir

    filepath = processed_dir / f"base_games_{start_season}_{end_season}.parquet"
    if not filepath.exists():
        raise FileNotFoundError(
            f"Base dataset not found: {filepath}\n"
            f"Run build_base_dataset() first with seasons {start_season}-{end_season}."
        )

    df = pd.read_parquet(filepath)

    required = ["game_id", "gameday", "season", "game_index"]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Loaded dataset missing required columns: {missing}")

    return df
