"""
Leak-free pre-game team statistics for calibration.

Responsibilities
----------------
- Take the chronologically indexed history (one row per completed game).
- Build team-game long format (two rows per game: one per team).
- Add expanding pre-game scoring means and rest days per team.
- Re-pivot back to game-level (home_* / away_* columns).
- Join onto persisted backtest results to form the calibration history.

Usage example
-------------
    from sports_forecaster.data.feature_engineering.team_stats_pipeline import (
        build_calibration_history,
    )

    history = build_calibration_history(results_df, games_df)
"""

# Intentionally keep this file light to avoid circular imports.
# Import concrete modules where you need them.
