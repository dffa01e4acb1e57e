from __future__ import annotations

"""
Chronological replay of completed games.

One invocation: load the persisted document, fetch completed games, replay
the unprocessed ones in time order (predict, grade, upsert the result, update
ratings), then replace the document in one atomic write. Games already in
the processed set are skipped, so a failed or partial run can simply be run
again.
"""

import logging
from dataclasses import asdict, dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Sequence

import pandas as pd

from sports_forecaster.config import DATA_CONFIG, get_sport_profile
from sports_forecaster.data.loaders.feeds import (
    DEFAULT_FEED_TIMEOUT,
    STATUS_FINAL,
    STATUS_SCHEDULED,
    MarketLineFeed,
    ScheduleFeed,
    fetch_with_timeout,
    market_line_from_row,
    validate_games_frame,
)
from sports_forecaster.data.preprocessing.base_dataset import (
    add_season,
    completed_games,
    sort_chronologically,
)
from sports_forecaster.evaluation.conviction import (
    ConvictionPolicy,
    ConvictionScorer,
    load_conviction_policy,
)
from sports_forecaster.evaluation.grading import (
    grade_moneyline,
    grade_spread,
    grade_total,
    moneyline_edge,
    spread_edge,
    total_edge,
)
from sports_forecaster.evaluation.records import BacktestResult, MarketLine
from sports_forecaster.models.predictor import ModelParams, PredictionRecord, ScorePredictor
from sports_forecaster.models.ratings import RatingUpdater
from sports_forecaster.models.situational import (
    SituationalAdjuster,
    apply_adjusters,
    context_from_row,
    default_adjusters,
)
from sports_forecaster.storage.state_store import SportState, StateStore

logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    IDLE = "idle"
    LOADING_STATE = "loading-state"
    REPLAYING = "replaying"
    PERSISTING = "persisting"


@dataclass
class RunReport:
    """What one invocation did."""

    games_fetched: int = 0
    already_processed: int = 0
    missing_score: int = 0
    replayed: int = 0
    graded: int = 0
    ungraded: int = 0
    feed_failed: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class BacktestRunner:
    """
    Replays one sport's game history for one model version.

    Parameters
    ----------
    sport:
        Sport key from SPORT_PROFILES.
    schedule_feed:
        Produces the canonical games frame (see data.loaders.feeds).
    line_feed:
        Optional market-line feed; when absent, lines embedded in the games
        frame (market_spread / market_total) are used.
    store:
        Where the whole-document state lives.
    params:
        Model parameters; defaults to the sport profile's.
    season_carryover:
        If set, ratings are pulled toward the base rating by this carryover
        fraction whenever the replay crosses into a new season.
    """

    def __init__(
        self,
        sport: str,
        schedule_feed: ScheduleFeed,
        line_feed: Optional[MarketLineFeed] = None,
        store: Optional[StateStore] = None,
        params: Optional[ModelParams] = None,
        model_version: str = "v1",
        adjusters: Optional[Sequence[SituationalAdjuster]] = None,
        conviction_policy: Optional[ConvictionPolicy] = None,
        season_carryover: Optional[float] = None,
        feed_timeout: float = DEFAULT_FEED_TIMEOUT,
    ) -> None:
        self.profile = get_sport_profile(sport)
        self.sport = self.profile.sport
        self.schedule_feed = schedule_feed
        self.line_feed = line_feed
        self.store = store or StateStore()
        self.params = params or ModelParams.for_sport(self.profile)
        self.model_version = model_version
        self.predictor = ScorePredictor(self.params, model_version=model_version)
        self.updater = RatingUpdater(
            k_factor=self.profile.k_factor,
            home_advantage=self.profile.elo_home_bonus,
        )
        self.adjusters = list(adjusters) if adjusters is not None else default_adjusters()
        self.conviction = ConvictionScorer(
            conviction_policy or load_conviction_policy(self.sport)
        )
        if season_carryover is not None and not 0.0 <= season_carryover <= 1.0:
            raise ValueError(f"season_carryover must be in [0, 1]; got {season_carryover}")
        self.season_carryover = season_carryover
        self.feed_timeout = feed_timeout
        self.state = RunnerState.IDLE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _transition(self, new_state: RunnerState) -> None:
        logger.debug("%s/%s runner: %s -> %s", self.sport, self.model_version, self.state.value, new_state.value)
        self.state = new_state

    def load_state(self) -> SportState:
        return self.store.load(self.sport, self.model_version, base_rating=self.profile.base_rating)

    def _fetch_games(self) -> Optional[pd.DataFrame]:
        def _read() -> pd.DataFrame:
            return validate_games_frame(self.schedule_feed.fetch_games())

        return fetch_with_timeout(
            _read,
            timeout=self.feed_timeout,
            default=None,
            description=f"{self.sport} schedule feed",
        )

    def run(self) -> RunReport:
        """Replay every newly completed game and persist the result."""
        report = RunReport()
        try:
            self._transition(RunnerState.LOADING_STATE)
            state = self.load_state()

            games = self._fetch_games()
            if games is None:
                report.feed_failed = True
                logger.warning("%s: no schedule data this run; keeping persisted state.", self.sport)
                return report
            report.games_fetched = len(games)

            processed = games["game_id"].isin(state.processed_game_ids)
            report.already_processed = int(processed.sum())
            new_games = games[~processed]

            finals = completed_games(new_games)
            report.missing_score = int(
                (new_games["status"] == STATUS_FINAL).sum() - len(finals)
            )
            if finals.empty:
                logger.info("%s: no new completed games.", self.sport)
                return report

            self._transition(RunnerState.REPLAYING)
            for _, row in sort_chronologically(add_season(finals)).iterrows():
                result = self.replay_game(state, row)
                report.replayed += 1
                if result.is_graded:
                    report.graded += 1
                else:
                    report.ungraded += 1

            self._transition(RunnerState.PERSISTING)
            self.store.save(state)
            logger.info(
                "%s/%s: replayed %d games (%d graded, %d ungraded).",
                self.sport, self.model_version, report.replayed, report.graded, report.ungraded,
            )
            return report
        finally:
            self._transition(RunnerState.IDLE)

    # ------------------------------------------------------------------
    # Per-game replay
    # ------------------------------------------------------------------
    def _roll_season(self, state: SportState, season: Optional[int]) -> None:
        if season is None:
            return
        if state.current_season is not None and season > state.current_season and self.season_carryover is not None:
            logger.info(
                "%s: new season %d, regressing ratings (carryover=%.2f).",
                self.sport, season, self.season_carryover,
            )
            state.ratings.regress_to_mean(self.season_carryover)
        if state.current_season is None or season > state.current_season:
            state.current_season = season

    def _context(self, state: SportState, row: pd.Series):
        home_last = state.ratings.get(row["home_team"]).last_game_time if row["home_team"] in state.ratings else None
        away_last = state.ratings.get(row["away_team"]).last_game_time if row["away_team"] in state.ratings else None
        return context_from_row(row, home_last, away_last, self.profile.max_rest_days)

    def _predict(self, state: SportState, row: pd.Series) -> PredictionRecord:
        context = self._context(state, row)
        adjustments = apply_adjusters(context, self.params, self.adjusters)
        return self.predictor.predict(
            state.ratings,
            game_id=str(row["game_id"]),
            home_id=str(row["home_team"]),
            away_id=str(row["away_team"]),
            adjustments=adjustments,
            game_time=pd.Timestamp(row["gameday"]).isoformat(),
        )

    def _resolve_line(self, state: SportState, row: pd.Series) -> Optional[MarketLine]:
        """Locked line first, then the line feed, then any line on the game row."""
        game_id = str(row["game_id"])
        if game_id in state.market_lines:
            return state.market_lines[game_id]

        line = None
        if self.line_feed is not None:
            line = fetch_with_timeout(
                self.line_feed.fetch_line,
                game_id,
                timeout=self.feed_timeout,
                default=None,
                description=f"{self.sport} market line for {game_id}",
            )
        if line is None:
            line = market_line_from_row(row)
        return line

    def grade(self, result: BacktestResult, line: Optional[MarketLine]) -> BacktestResult:
        """Return `result` with every market graded against `line` (nothing graded without one)."""
        result = replace(
            result,
            market_spread=None,
            market_total=None,
            line_captured_at=None,
            spread_pick=None,
            spread_result=None,
            moneyline_pick=None,
            moneyline_result=None,
            total_pick=None,
            total_result=None,
            conviction=None,
            spread_best_bet=False,
            moneyline_best_bet=False,
            total_best_bet=False,
        )
        if line is None:
            logger.info("%s: no market line for %s; left ungraded.", self.sport, result.game_id)
            return result

        result.line_captured_at = line.captured_at
        if line.spread is not None:
            result.market_spread = line.spread
            spread_grade = grade_spread(result.predicted_spread, line.spread, result.actual_spread)
            if spread_grade is not None:
                result.spread_pick, result.spread_result = spread_grade
                result.spread_best_bet = bool(
                    spread_edge(result.predicted_spread, line.spread) >= self.params.min_spread_edge
                )
            result.conviction = self.conviction.score(
                result.predicted_spread,
                line.spread,
                result.home_rating,
                result.away_rating,
                result.home_team,
                result.away_team,
            )

        ml_grade = grade_moneyline(result.home_win_probability, result.home_score, result.away_score)
        if ml_grade is not None:
            result.moneyline_pick, result.moneyline_result = ml_grade
            result.moneyline_best_bet = bool(
                moneyline_edge(result.home_win_probability) >= self.params.min_moneyline_edge
            )

        if line.total is not None:
            result.market_total = line.total
            result.total_pick, result.total_result = grade_total(
                result.predicted_total, line.total, result.actual_total
            )
            result.total_best_bet = bool(
                total_edge(result.predicted_total, line.total) >= self.params.min_total_edge
            )
        return result

    @staticmethod
    def _upsert(state: SportState, result: BacktestResult) -> None:
        prior = state.results.get(result.game_id)
        if prior is not None:
            state.summary.discard(prior)
        state.results[result.game_id] = result
        state.summary.add(result)

    def replay_game(self, state: SportState, row: pd.Series) -> BacktestResult:
        """Predict, grade, store, then update ratings for one completed game."""
        game_id = str(row["game_id"])
        season = int(row["season"]) if "season" in row and not pd.isna(row["season"]) else None
        self._roll_season(state, season)

        prediction = self._predict(state, row)
        line = self._resolve_line(state, row)
        if line is not None:
            state.market_lines[game_id] = line

        result = BacktestResult.from_prediction(
            prediction, float(row["home_score"]), float(row["away_score"]), season=season
        )
        result = self.grade(result, line)
        self._upsert(state, result)

        self.updater.apply_game(
            state.ratings,
            prediction.home_team,
            prediction.away_team,
            result.home_score,
            result.away_score,
            game_time=prediction.game_time,
        )
        state.processed_game_ids.add(game_id)
        state.predictions.pop(game_id, None)
        state.summary.mark_processed(prediction.game_time)
        return result

    # ------------------------------------------------------------------
    # Backfill / upcoming / export
    # ------------------------------------------------------------------
    def backfill_lines(self, lines: Iterable[MarketLine]) -> int:
        """
        Overwrite locked lines and regrade the affected results.

        Regrades replace the stored result by game id. Ratings and the
        processed set are untouched. Returns the number of results regraded.
        """
        self._transition(RunnerState.LOADING_STATE)
        try:
            state = self.load_state()
            regraded = 0
            for line in lines:
                line = replace(line, backfilled=True)
                state.market_lines[line.game_id] = line
                prior = state.results.get(line.game_id)
                if prior is None:
                    continue
                self._upsert(state, self.grade(prior, line))
                regraded += 1

            self._transition(RunnerState.PERSISTING)
            self.store.save(state)
            logger.info("%s/%s: backfilled lines, %d results regraded.", self.sport, self.model_version, regraded)
            return regraded
        finally:
            self._transition(RunnerState.IDLE)

    def predict_upcoming(self, games: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """
        Predict every scheduled game with the current ratings.

        Predictions are stored by game id (a re-run supersedes the previous
        one) and returned with the market line and conviction tier.
        """
        self._transition(RunnerState.LOADING_STATE)
        try:
            state = self.load_state()
            if games is None:
                games = self._fetch_games()
                if games is None:
                    logger.warning("%s: no schedule data; no upcoming predictions.", self.sport)
                    return pd.DataFrame()
            else:
                games = validate_games_frame(games)

            upcoming = games[games["status"] == STATUS_SCHEDULED]
            upcoming = upcoming[~upcoming["game_id"].isin(state.processed_game_ids)]
            upcoming = upcoming.sort_values(["gameday", "game_id"], kind="mergesort")

            rows = []
            for _, row in upcoming.iterrows():
                prediction = self._predict(state, row)
                state.predictions[prediction.game_id] = prediction
                line = self._resolve_line(state, row)
                market_spread = line.spread if line is not None else None
                record = prediction.to_dict()
                record.pop("adjustments")
                record["market_spread"] = market_spread
                record["market_total"] = line.total if line is not None else None
                record["conviction"] = self.conviction.score(
                    prediction.predicted_spread,
                    market_spread,
                    prediction.home_rating,
                    prediction.away_rating,
                    prediction.home_team,
                    prediction.away_team,
                )
                rows.append(record)

            self._transition(RunnerState.PERSISTING)
            self.store.save(state)
            return pd.DataFrame(rows)
        finally:
            self._transition(RunnerState.IDLE)

    def results_frame(self, state: Optional[SportState] = None) -> pd.DataFrame:
        if state is None:
            state = self.load_state()
        rows = [r.to_dict() for r in state.results.values()]
        df = pd.DataFrame(rows)
        if df.empty:
            return df
        df = df.drop(columns=["adjustments"])
        return df.sort_values(["game_time", "game_id"], kind="mergesort").reset_index(drop=True)

    def export_results(self, path: Optional[Path] = None) -> Path:
        """Write the results table to parquet."""
        if path is None:
            path = DATA_CONFIG.exports_dir / f"{self.sport}_{self.model_version}_results.parquet"
        path.parent.mkdir(parents=True, exist_ok=True)
        self.results_frame().to_parquet(path, index=False)
        return path
