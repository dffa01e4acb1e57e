from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

# Base directory for the project (repo root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class DataConfig:
    """Data storage paths and defaults."""

    raw_data_dir: Path = PROJECT_ROOT / "data" / "raw"
    processed_data_dir: Path = PROJECT_ROOT / "data" / "processed"
    state_dir: Path = PROJECT_ROOT / "data" / "state"
    exports_dir: Path = PROJECT_ROOT / "data" / "exports"
    conviction_dir: Path = PROJECT_ROOT / "config" / "conviction"
    default_seasons: Optional[List[int]] = None

    def __post_init__(self):
        if self.default_seasons is None:
            # Multi-season default; backtests can override
            object.__setattr__(self, "default_seasons", list(range(2018, 2025)))


@dataclass(frozen=True)
class LogConfig:
    """Logging defaults."""

    logs_dir: Path = PROJECT_ROOT / "logs"
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class SportProfile:
    """
    League constants for one sport.

    Attributes:
        sport: Short key ("nfl", "nba", ...).
        league_avg_points: Average points scored per team per game.
        base_rating: Starting Elo rating for a team with no history.
        k_factor: Elo K-factor before the margin-of-victory multiplier.
        elo_home_bonus: Elo points added to the home side for win probability.
        edge_threshold: Spread edge (points/goals) that counts as a strong signal.
        periods: Scoring periods per game (quarters, periods, halves).
        max_rest_days: Rest days beyond this count as this many.
        default_params: Overrides for ModelParams defaults.
    """

    sport: str
    league_avg_points: float
    base_rating: float = 1500.0
    k_factor: float = 20.0
    elo_home_bonus: float = 48.0
    edge_threshold: float = 5.0
    periods: int = 4
    max_rest_days: int = 7
    default_params: Dict[str, float] = field(default_factory=dict)


SPORT_PROFILES: Dict[str, SportProfile] = {
    "nfl": SportProfile(
        sport="nfl",
        league_avg_points=22.0,
        edge_threshold=5.0,
        default_params={
            "regression": 0.3,
            "rating_to_points": 0.0593,
            "home_advantage": 2.28,
            "rating_cap": 4.0,
            "spread_shrinkage": 0.55,
            "weather_weight": 3.0,
        },
    ),
    "nba": SportProfile(
        sport="nba",
        league_avg_points=112.0,
        edge_threshold=5.0,
        default_params={
            "regression": 0.3,
            "rating_to_points": 0.08,
            "home_advantage": 2.5,
            "rating_cap": 6.0,
            "spread_shrinkage": 0.5,
            "rest_weight": 1.0,
        },
    ),
    "nhl": SportProfile(
        sport="nhl",
        league_avg_points=3.0,
        k_factor=8.0,
        elo_home_bonus=33.0,
        edge_threshold=1.5,
        periods=3,
        default_params={
            "regression": 0.4,
            "rating_to_points": 0.005,
            "home_advantage": 0.2,
            "rating_cap": 1.0,
            "spread_shrinkage": 0.3,
        },
    ),
    "cbb": SportProfile(
        sport="cbb",
        league_avg_points=71.0,
        base_rating=1200.0,
        edge_threshold=5.0,
        periods=2,
        default_params={
            "regression": 0.3,
            "rating_to_points": 0.07,
            "home_advantage": 3.5,
            "rating_cap": 8.0,
            "spread_shrinkage": 0.5,
        },
    ),
}


def get_sport_profile(sport: str) -> SportProfile:
    """Look up a SportProfile by key (case-insensitive)."""
    key = sport.lower()
    if key not in SPORT_PROFILES:
        raise KeyError(
            f"Unknown sport '{sport}'. Known sports: {sorted(SPORT_PROFILES)}"
        )
    return SPORT_PROFILES[key]


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for scripts and worker processes."""
    logging.basicConfig(
        level=(level or LOG_CONFIG.level).upper(),
        format=LOG_CONFIG.format,
    )


# Global config instances
DATA_CONFIG = DataConfig()
LOG_CONFIG = LogConfig()
