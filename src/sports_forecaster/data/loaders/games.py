from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from sports_forecaster.config import DATA_CONFIG
from sports_forecaster.data.loaders.feeds import STATUS_FINAL, STATUS_SCHEDULED

try:
    import nfl_data_py as nfl
except ImportError as e:
    raise ImportError(
        "nfl-data-py is required for NflGameLoader.\n"
        "Install with `pip install nfl-data-py` or add it to pyproject.toml."
    ) from e


@dataclass
class NflGameLoaderConfig:
    """
    Configuration for the NFL schedule/results loader.

    Attributes:
        seasons: List of NFL seasons to load.
        save_parquet: If True, saves the canonical DataFrame to data/raw/.
        include_markets: If True, convert closing lines into market_spread / market_total.
        include_weather: If True, keep temperature / wind / roof as situational columns.
    """

    seasons: List[int]
    save_parquet: bool = True
    include_markets: bool = True
    include_weather: bool = True


class NflGameLoader:
    """
    Load NFL games (and closing lines) from nfl_data_py into the canonical
    games table used by the backtest runner:

    - One row per game with game_id, season, week, gameday
    - status: "final" once both scores are present, else "scheduled"
    - market_spread in the home-relative convention (negative = home favored)
    - Optional weather columns for WeatherAdjuster
    """

    BASE_COLS = [
        "game_id",
        "season",
        "week",
        "game_type",
        "gameday",
        "game_date",
        "gametime",
        "home_team",
        "away_team",
        "home_score",
        "away_score",
        "stadium",
    ]

    MARKET_COLS = [
        "spread_line",
        "total_line",
    ]

    WEATHER_COLS = [
        "roof",
        "temp",
        "wind",
    ]

    # Roof values for which weather does not apply
    INDOOR_ROOFS = {"dome", "closed"}

    def __init__(self, config: Optional[NflGameLoaderConfig] = None):
        if config is None:
            config = NflGameLoaderConfig(seasons=DATA_CONFIG.default_seasons)
        self.config = config

    def fetch_games(self) -> pd.DataFrame:
        """ScheduleFeed interface; never writes parquet."""
        return self._build_games_table(self._load_raw_schedules())

    def load(self) -> pd.DataFrame:
        """
        Load games into a canonical DataFrame.

        Returns:
            A DataFrame with:
            - Identifiers: game_id, season, week
            - Time: gameday (datetime64)
            - Teams and venue: home_team, away_team, venue
            - status, home_score, away_score
            - Optional markets: market_spread, market_total
            - Optional weather: temperature, wind_speed, is_indoor
        """
        games = self._build_games_table(self._load_raw_schedules())

        if self.config.save_parquet:
            DATA_CONFIG.raw_data_dir.mkdir(parents=True, exist_ok=True)
            start_season = min(self.config.seasons)
            end_season = max(self.config.seasons)
            path = DATA_CONFIG.raw_data_dir / f"nfl_games_{start_season}_{end_season}.parquet"
            games.to_parquet(path, index=False)

        return games

    def _load_raw_schedules(self) -> pd.DataFrame:
        """
        Load raw schedules from nfl_data_py.

        Notes:
            This is written for nfl_data_py >= 0.3.x where
            `import_schedules(seasons)` is available.
        """
        seasons = self.config.seasons
        if not seasons:
            raise ValueError("At least one season must be provided to NflGameLoader.")

        try:
            schedules = nfl.import_schedules(seasons)
        except AttributeError as e:
            raise RuntimeError(
                "nfl_data_py.import_schedules is not available. "
                "Check your nfl-data-py version and update this loader accordingly."
            ) from e

        if not isinstance(schedules, pd.DataFrame):
            raise TypeError("nfl.import_schedules did not return a pandas DataFrame.")

        return schedules

    def _build_games_table(self, schedules: pd.DataFrame) -> pd.DataFrame:
        df = schedules.copy()

        if "gameday" in df.columns:
            df["gameday"] = pd.to_datetime(df["gameday"])
        elif "game_date" in df.columns:
            df["gameday"] = pd.to_datetime(df["game_date"])
        else:
            raise KeyError(
                "Could not find a 'gameday' or 'game_date' column in schedules."
            )

        for col in ["game_id", "home_team", "away_team", "home_score", "away_score"]:
            if col not in df.columns:
                raise KeyError(f"Missing required schedule column: {col}")

        keep_cols = list(self.BASE_COLS)
        if self.config.include_markets:
            keep_cols.extend(self.MARKET_COLS)
        if self.config.include_weather:
            keep_cols.extend(self.WEATHER_COLS)
        df = df[[c for c in keep_cols if c in df.columns]].copy()

        # Kickoff time folded into gameday when the feed provides it
        if "gametime" in df.columns:
            kickoff = pd.to_timedelta(df["gametime"].fillna("00:00").astype(str) + ":00", errors="coerce")
            df["gameday"] = df["gameday"] + kickoff.fillna(pd.Timedelta(0))
            df = df.drop(columns=["gametime"])
        if "game_date" in df.columns:
            df = df.drop(columns=["game_date"])

        if "stadium" in df.columns:
            df = df.rename(columns={"stadium": "venue"})

        df["status"] = np.where(
            df["home_score"].notnull() & df["away_score"].notnull(),
            STATUS_FINAL,
            STATUS_SCHEDULED,
        )

        if self.config.include_markets:
            self._add_market_columns_inplace(df)
        if self.config.include_weather:
            self._add_weather_columns_inplace(df)

        col_order = [
            c
            for c in [
                "game_id",
                "season",
                "week",
                "gameday",
                "home_team",
                "away_team",
                "venue",
                "status",
                "home_score",
                "away_score",
                "market_spread",
                "market_total",
            ]
            if c in df.columns
        ]
        other_cols = [c for c in df.columns if c not in col_order]
        return df[col_order + other_cols].reset_index(drop=True)

    @staticmethod
    def _add_market_columns_inplace(df: pd.DataFrame) -> None:
        """
        nflverse quotes spread_line as points the home team is favored by
        (positive = home favored). The engine's spreads are away-minus-home,
        so the sign flips.
        """
        if "spread_line" in df.columns:
            df["market_spread"] = -df["spread_line"].astype(float)
        if "total_line" in df.columns:
            df["market_total"] = df["total_line"].astype(float)

    def _add_weather_columns_inplace(self, df: pd.DataFrame) -> None:
        if "temp" in df.columns:
            df["temperature"] = df["temp"].astype(float)
        if "wind" in df.columns:
            df["wind_speed"] = df["wind"].astype(float)
        if "roof" in df.columns:
            df["is_indoor"] = df["roof"].astype(str).str.lower().isin(self.INDOOR_ROOFS)
