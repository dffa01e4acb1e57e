from __future__ import annotations

"""
Team strength ratings.

`RatingStore` is the explicit state container for one sport's teams; it is
passed into the updater and predictor instead of living in a module-level map.
`RatingUpdater` applies Elo updates after completed games.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Iterator

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_BASE_RATING = 1500.0


class NonFiniteRatingError(ValueError):
    """Raised when a rating update produces NaN or infinity."""


@dataclass
class Team:
    """
    One team's rating and rolling scoring profile.

    Attributes:
        team_id: Stable identifier (abbreviation is fine for most feeds).
        name: Display name.
        abbreviation: Short display code.
        rating: Elo-style strength rating.
        points_for_per_game: Running mean of points scored, None before any game.
        points_against_per_game: Running mean of points allowed.
        games_played: Number of completed games folded into the means.
        last_game_time: ISO timestamp of the last completed game.
    """

    team_id: str
    name: str = ""
    abbreviation: str = ""
    rating: float = DEFAULT_BASE_RATING
    points_for_per_game: float | None = None
    points_against_per_game: float | None = None
    games_played: int = 0
    last_game_time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Team":
        return cls(
            team_id=str(data["team_id"]),
            name=data.get("name", ""),
            abbreviation=data.get("abbreviation", ""),
            rating=float(data.get("rating", DEFAULT_BASE_RATING)),
            points_for_per_game=data.get("points_for_per_game"),
            points_against_per_game=data.get("points_against_per_game"),
            games_played=int(data.get("games_played", 0)),
            last_game_time=data.get("last_game_time"),
        )


class RatingStore:
    """Holds every team's current rating for one sport."""

    def __init__(
        self,
        teams: Iterable[Team] = (),
        base_rating: float = DEFAULT_BASE_RATING,
    ) -> None:
        self.base_rating = float(base_rating)
        self._teams: dict[str, Team] = {}
        for team in teams:
            self._teams[team.team_id] = team

    def __contains__(self, team_id: object) -> bool:
        return team_id in self._teams

    def __len__(self) -> int:
        return len(self._teams)

    def __iter__(self) -> Iterator[Team]:
        return iter(self._teams.values())

    def ensure(self, team_id: str, name: str = "", abbreviation: str = "") -> Team:
        """Return the team, creating it at the base rating if unseen."""
        team = self._teams.get(team_id)
        if team is None:
            team = Team(
                team_id=team_id,
                name=name,
                abbreviation=abbreviation or team_id,
                rating=self.base_rating,
            )
            self._teams[team_id] = team
        return team

    def get(self, team_id: str) -> Team:
        try:
            return self._teams[team_id]
        except KeyError:
            raise KeyError(f"Team '{team_id}' is not in the rating store.") from None

    def rating(self, team_id: str) -> float:
        team = self._teams.get(team_id)
        return team.rating if team is not None else self.base_rating

    def snapshot(self) -> dict[str, float]:
        """Current rating per team id."""
        return {team_id: team.rating for team_id, team in self._teams.items()}

    def copy(self) -> "RatingStore":
        return RatingStore(
            (Team.from_dict(t.to_dict()) for t in self._teams.values()),
            base_rating=self.base_rating,
        )

    def regress_to_mean(self, carryover: float) -> None:
        """
        Pull every rating toward the base rating between seasons.

        carryover=1 keeps ratings as they are; carryover=0 resets everyone.
        Scoring profiles restart so the new season's means are not stale.
        """
        if not 0.0 <= carryover <= 1.0:
            raise ValueError(f"carryover must be in [0, 1]; got {carryover}")
        for team in self._teams.values():
            team.rating = self.base_rating + (team.rating - self.base_rating) * carryover
            team.points_for_per_game = None
            team.points_against_per_game = None
            team.games_played = 0

    def to_records(self) -> list[dict[str, Any]]:
        # Highest rated first, matching how standings are published
        teams = sorted(self._teams.values(), key=lambda t: (-t.rating, t.team_id))
        return [t.to_dict() for t in teams]

    @classmethod
    def from_records(
        cls,
        records: Iterable[dict[str, Any]],
        base_rating: float = DEFAULT_BASE_RATING,
    ) -> "RatingStore":
        return cls((Team.from_dict(r) for r in records), base_rating=base_rating)

    def to_frame(self) -> pd.DataFrame:
        """Standings table, one row per team sorted by rating."""
        columns = list(Team.__dataclass_fields__)
        return pd.DataFrame(self.to_records(), columns=columns)


@dataclass(frozen=True)
class RatingUpdater:
    """
    Elo updates with an optional margin-of-victory multiplier.

    Attributes:
        k_factor: Base step size.
        home_advantage: Elo points credited to the home side when computing
            the expected result inside `apply_game`. `update` never uses it,
            so its winner/loser deltas stay exactly zero-sum.
        use_mov_multiplier: Scale K by ((mov + 3) ** 0.8) / (7.5 + 0.006 * |diff|).
    """

    k_factor: float = 20.0
    home_advantage: float = 0.0
    use_mov_multiplier: bool = True

    @staticmethod
    def expected_score(rating: float, opponent_rating: float) -> float:
        return 1.0 / (1.0 + 10.0 ** ((opponent_rating - rating) / 400.0))

    def effective_k(self, margin_of_victory: float | None, rating_gap: float) -> float:
        if not self.use_mov_multiplier or margin_of_victory is None:
            return float(self.k_factor)
        mov = abs(float(margin_of_victory))
        multiplier = ((mov + 3.0) ** 0.8) / (7.5 + 0.006 * abs(rating_gap))
        return float(self.k_factor) * multiplier

    def _delta(
        self,
        rating: float,
        opponent_rating: float,
        score: float,
        margin_of_victory: float | None,
    ) -> float:
        expected = self.expected_score(rating, opponent_rating)
        k = self.effective_k(margin_of_victory, rating - opponent_rating)
        delta = k * (score - expected)
        if not math.isfinite(delta):
            raise NonFiniteRatingError(
                f"Rating update is not finite (rating={rating}, opponent={opponent_rating}, "
                f"k={k}). Check k_factor and rating inputs."
            )
        return delta

    def update(
        self,
        winner_rating: float,
        loser_rating: float,
        margin_of_victory: float | None = None,
    ) -> tuple[float, float]:
        """Return (new_winner_rating, new_loser_rating); the two deltas sum to zero."""
        delta = self._delta(winner_rating, loser_rating, 1.0, margin_of_victory)
        new_winner, new_loser = winner_rating + delta, loser_rating - delta
        if not (math.isfinite(new_winner) and math.isfinite(new_loser)):
            raise NonFiniteRatingError(
                f"Updated ratings are not finite: {new_winner}, {new_loser}"
            )
        return new_winner, new_loser

    def apply_game(
        self,
        store: RatingStore,
        home_id: str,
        away_id: str,
        home_score: float,
        away_score: float,
        game_time: str | None = None,
    ) -> float:
        """
        Fold one completed game into the store.

        Only the two teams involved are touched. Returns the home team's
        rating change (the away team moved by the negative of it).
        """
        home = store.ensure(home_id)
        away = store.ensure(away_id)

        if home_score > away_score:
            score = 1.0
        elif home_score < away_score:
            score = 0.0
        else:
            score = 0.5

        margin = home_score - away_score if score != 0.5 else None
        delta = self._delta(
            home.rating + self.home_advantage,
            away.rating,
            score,
            margin,
        )
        home.rating += delta
        away.rating -= delta
        if not (math.isfinite(home.rating) and math.isfinite(away.rating)):
            raise NonFiniteRatingError(
                f"Ratings for {home_id}/{away_id} became non-finite after update."
            )

        _fold_scoring(home, float(home_score), float(away_score), game_time)
        _fold_scoring(away, float(away_score), float(home_score), game_time)

        logger.debug(
            "Rating update %s %.1f (%+.2f) vs %s %.1f",
            home_id, home.rating, delta, away_id, away.rating,
        )
        return delta


def _fold_scoring(team: Team, points_for: float, points_against: float, game_time: str | None) -> None:
    """Update a team's running per-game means with one more game."""
    n = team.games_played
    if n == 0 or team.points_for_per_game is None or team.points_against_per_game is None:
        team.points_for_per_game = points_for
        team.points_against_per_game = points_against
    else:
        team.points_for_per_game = (team.points_for_per_game * n + points_for) / (n + 1)
        team.points_against_per_game = (team.points_against_per_game * n + points_against) / (n + 1)
    team.games_played = n + 1
    if game_time is not None:
        team.last_game_time = game_time
