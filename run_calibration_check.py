"""
Quick Calibration Check

Replays NFL seasons through the backtest runner, joins the stored results
with leak-free pre-game team stats and grid-searches a handful of model
parameters against the recorded closing lines. The last season is held out
and the top candidates are re-scored on it.

Example:
    python run_calibration_check.py
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
from sports_forecaster.data.feature_engineering.team_stats_pipeline import (  # noqa: E402
    build_calibration_history,
)
from sports_forecaster.data.loaders.feeds import FrameScheduleFeed  # noqa: E402
from sports_forecaster.data.loaders.games import (  # noqa: E402
    NflGameLoader,
    NflGameLoaderConfig,
)
from sports_forecaster.data.preprocessing.base_dataset import prepare_history  # noqa: E402
from sports_forecaster.evaluation.backtest import BacktestRunner  # noqa: E402
from sports_forecaster.evaluation.calibration import (  # noqa: E402
    CalibrationConfig,
    ParameterCalibrator,
)
from sports_forecaster.models.predictor import ModelParams  # noqa: E402
from sports_forecaster.storage.state_store import StateStore  # noqa: E402

GRID = {
    "regression": [0.2, 0.3, 0.4],
    "home_advantage": [1.5, 2.0, 2.5],
    "spread_shrinkage": [0.45, 0.55, 0.65],
    "weather_weight": [0.0, 3.0],
}


def main() -> None:
    configure_logging()
    print("=== Sports Forecaster: Calibration Check ===")

    seasons = DATA_CONFIG.default_seasons[-4:]
    print(f"Loading NFL seasons: {seasons}")

    try:
        games = NflGameLoader(NflGameLoaderConfig(seasons=seasons, save_parquet=False)).fetch_games()
    except Exception as exc:  # pragma: no cover - manual inspection script
        print("\nERROR while loading games:\n")
        print(type(exc).__name__, ":", str(exc))
        return

    with tempfile.TemporaryDirectory() as tmp:
        runner = BacktestRunner("nfl", FrameScheduleFeed(games), store=StateStore(Path(tmp)))
        report = runner.run()
        print(f"Replayed {report.replayed} games ({report.graded} graded).")
        results = runner.results_frame()

    history = build_calibration_history(results, prepare_history(games))
    print(f"Calibration history: {len(history)} games with a line")

    config = CalibrationConfig(
        min_graded=100,
        holdout_seasons=(seasons[-1],),
        top_n=5,
    )
    base = ModelParams.for_sport(runner.profile)

    try:
        calibration = ParameterCalibrator(history, base, config).run(GRID)
    except Exception as exc:  # pragma: no cover - manual inspection script
        print("\nERROR while calibrating:\n")
        print(type(exc).__name__, ":", str(exc))
        return

    print("\n--- Search summary ---")
    print(f"Evaluated: {calibration.evaluated}")
    print(f"Rejected: {len(calibration.rejected)}")
    print(f"Below graded floor: {calibration.below_floor}")

    if calibration.best is None:
        print("\nNo candidate met the graded floor.")
        return

    print("\n--- Top candidates (search seasons) ---")
    print(calibration.to_frame().to_string())

    if calibration.holdout:
        print(f"\n--- Holdout season {seasons[-1]} ---")
        for candidate in calibration.holdout:
            row = candidate.to_row()
            print(
                f"regression={row['regression']:.2f} home_advantage={row['home_advantage']:.2f} "
                f"spread_shrinkage={row['spread_shrinkage']:.2f} -> spread {candidate.record('spread').to_dict()}"
            )

    print("\nDone.")


if __name__ == "__main__":
    main()
