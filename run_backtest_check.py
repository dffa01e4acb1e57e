"""
Quick Backtest Check

Replays recent NFL seasons from nfl_data_py through the backtest runner and
prints the running record. State is written under a temporary directory so
the check never touches data/state.

Example:
    python run_backtest_check.py
"""

from __future__ import annotations

import sys
import tempfile
from pathlib import Path

# Ensure src/ is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from sports_forecaster.config import DATA_CONFIG, configure_logging  # noqa: E402
from sports_forecaster.data.loaders.games import (  # noqa: E402
    NflGameLoader,
    NflGameLoaderConfig,
)
from sports_forecaster.evaluation.backtest import BacktestRunner  # noqa: E402
from sports_forecaster.storage.state_store import StateStore  # noqa: E402


def main() -> None:
    configure_logging()
    print("=== Sports Forecaster: Backtest Check ===")

    seasons = DATA_CONFIG.default_seasons[-2:]
    print(f"Replaying NFL seasons: {seasons}")

    loader = NflGameLoader(NflGameLoaderConfig(seasons=seasons, save_parquet=False))

    with tempfile.TemporaryDirectory() as tmp:
        runner = BacktestRunner(
            "nfl",
            loader,
            store=StateStore(Path(tmp)),
            season_carryover=0.67,
            feed_timeout=120.0,
        )

        try:
            report = runner.run()
        except Exception as exc:  # pragma: no cover - manual inspection script
            print("\nERROR while running backtest:\n")
            print(type(exc).__name__, ":", str(exc))
            return

        print("\n--- Run Report ---")
        for key, value in report.to_dict().items():
            print(f"{key}: {value}")

        if report.feed_failed:
            print("\nSchedule feed failed; nothing was replayed.")
            return

        state = runner.load_state()
        print("\n--- Record by market ---")
        for market, record in state.summary.markets.items():
            print(f"{market:>10}: {record.to_dict()}")

        print("\n--- Top 10 ratings ---")
        ratings = sorted(state.ratings.snapshot().items(), key=lambda kv: kv[1], reverse=True)
        for team, rating in ratings[:10]:
            print(f"{team:>4} {rating:8.1f}")

        print("\n--- Last 5 results ---")
        print(runner.results_frame(state).tail(5).to_string())

        upcoming = runner.predict_upcoming()
        print(f"\nUpcoming games predicted: {len(upcoming)}")

    print("\nDone.")


if __name__ == "__main__":
    main()
