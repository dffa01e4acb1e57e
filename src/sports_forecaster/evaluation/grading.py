from __future__ import annotations

"""
Grading of predictions against market lines and realized results.

Every function here is pure: the verdict depends only on the
(predicted, market, actual) values passed in.

Conventions
-----------
Spreads are home-relative "away minus home" points, the same convention the
predictor uses: -3 means the home side is favored by 3. An actual spread of
-7 means the home side won by 7. The home side covers when its margin plus
the spread crosses zero:

    home_margin + market_spread > 0   <=>   market_spread - actual_spread > 0

Internally each market reduces to two signs: the pick (+1 home/over,
-1 away/under, 0 no pick) and the outcome (+1 home covered/won or over hit,
-1 the other side, 0 landed on the number). Their product is the verdict:
+1 win, -1 loss, 0 push. The sign helpers accept floats or numpy arrays, so
the calibrator tallies whole histories through the same rules.
"""

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

WIN = "win"
LOSS = "loss"
PUSH = "push"
VERDICTS = (WIN, LOSS, PUSH)

HOME = "home"
AWAY = "away"
OVER = "over"
UNDER = "under"

SPREAD = "spread"
MONEYLINE = "moneyline"
TOTAL = "total"
MARKETS = (SPREAD, MONEYLINE, TOTAL)

# Profit per unit staked on a winning bet at standard -110 pricing
WIN_PAYOUT = 100.0 / 110.0


class Grade(NamedTuple):
    pick: str
    verdict: str


# ----------------------------------------------------------------------
# Sign helpers (float or ndarray)
# ----------------------------------------------------------------------
def spread_pick_sign(predicted_spread, market_spread):
    """+1 home when the model rates home better than the market, -1 away, 0 tie."""
    return np.sign(np.subtract(market_spread, predicted_spread))


def home_cover_margin(market_spread, actual_spread):
    """Points by which the home side beat the spread (negative = away covered)."""
    return np.subtract(market_spread, actual_spread)


def spread_outcome_sign(market_spread, actual_spread):
    return np.sign(home_cover_margin(market_spread, actual_spread))


def moneyline_pick_sign(home_win_probability):
    return np.sign(np.subtract(home_win_probability, 0.5))


def moneyline_outcome_sign(home_score, away_score):
    return np.sign(np.subtract(home_score, away_score))


def total_pick_sign(predicted_total, market_total):
    return np.where(np.greater(predicted_total, market_total), 1.0, -1.0)


def total_outcome_sign(market_total, actual_total):
    return np.sign(np.subtract(actual_total, market_total))


def spread_edge(predicted_spread, market_spread):
    """Points between the model's spread and the market's."""
    return np.abs(np.subtract(predicted_spread, market_spread))


def total_edge(predicted_total, market_total):
    return np.abs(np.subtract(predicted_total, market_total))


def moneyline_edge(home_win_probability):
    """Percentage points of home win probability away from a coin flip."""
    return np.abs(np.subtract(home_win_probability, 0.5)) * 100.0


def _verdict(pick_sign: float, outcome_sign: float) -> str:
    product = pick_sign * outcome_sign
    if product > 0:
        return WIN
    if product < 0:
        return LOSS
    return PUSH


# ----------------------------------------------------------------------
# Per-game grading
# ----------------------------------------------------------------------
def pick_spread_side(predicted_spread: float, market_spread: float) -> str | None:
    """Home if the model rates home better than the market does; None on a tie."""
    sign = float(spread_pick_sign(predicted_spread, market_spread))
    if sign > 0:
        return HOME
    if sign < 0:
        return AWAY
    return None


def grade_spread(predicted_spread: float, market_spread: float, actual_spread: float) -> Grade | None:
    """
    Grade the spread pick. Returns None when there is no pick (no-bet).

    A push is returned whenever the actual spread lands exactly on the
    market spread, whichever side was picked.
    """
    pick = float(spread_pick_sign(predicted_spread, market_spread))
    if pick == 0:
        return None
    outcome = float(spread_outcome_sign(market_spread, actual_spread))
    return Grade(HOME if pick > 0 else AWAY, _verdict(pick, outcome))


def grade_moneyline(home_win_probability: float, home_score: float, away_score: float) -> Grade | None:
    """
    Grade the straight-up pick implied by the win probability.

    No push state: a coin-flip probability is a no-bet and a drawn game is
    left ungraded.
    """
    pick = float(moneyline_pick_sign(home_win_probability))
    outcome = float(moneyline_outcome_sign(home_score, away_score))
    if pick == 0 or outcome == 0:
        return None
    return Grade(HOME if pick > 0 else AWAY, _verdict(pick, outcome))


def grade_total(predicted_total: float, market_total: float, actual_total: float) -> Grade:
    pick = float(total_pick_sign(predicted_total, market_total))
    outcome = float(total_outcome_sign(market_total, actual_total))
    return Grade(OVER if pick > 0 else UNDER, _verdict(pick, outcome))


@dataclass
class MarketRecord:
    """Win/loss/push tally for one market."""

    wins: int = 0
    losses: int = 0
    pushes: int = 0

    @property
    def graded(self) -> int:
        return self.wins + self.losses + self.pushes

    @property
    def decided(self) -> int:
        return self.wins + self.losses

    @property
    def win_pct(self) -> float | None:
        """Wins over decided bets; pushes do not count either way."""
        if self.decided == 0:
            return None
        return self.wins / self.decided

    @property
    def roi(self) -> float | None:
        """Return per unit staked at -110; pushes refund the stake."""
        if self.graded == 0:
            return None
        return (self.wins * WIN_PAYOUT - self.losses) / self.graded

    def _bump(self, verdict: str, step: int) -> None:
        if verdict == WIN:
            self.wins += step
        elif verdict == LOSS:
            self.losses += step
        elif verdict == PUSH:
            self.pushes += step
        else:
            raise ValueError(f"Unknown verdict '{verdict}'. Expected one of {VERDICTS}")

    def add(self, verdict: str | None) -> None:
        if verdict is not None:
            self._bump(verdict, 1)

    def discard(self, verdict: str | None) -> None:
        """Undo a previous add (used when a game is re-graded)."""
        if verdict is not None:
            self._bump(verdict, -1)

    @classmethod
    def tally(cls, pick_signs, outcome_signs, valid=None, allow_push: bool = True) -> "MarketRecord":
        """
        Count verdicts over arrays of pick/outcome signs.

        Rows with no pick, rows outside `valid`, and (when pushes are not a
        state of the market) rows with a zero outcome are not graded.
        """
        picks = np.asarray(pick_signs, dtype=float)
        outcomes = np.asarray(outcome_signs, dtype=float)
        mask = picks != 0
        if valid is not None:
            mask &= np.asarray(valid, dtype=bool)
        if not allow_push:
            mask &= outcomes != 0
        product = picks[mask] * outcomes[mask]
        return cls(
            wins=int(np.count_nonzero(product > 0)),
            losses=int(np.count_nonzero(product < 0)),
            pushes=int(np.count_nonzero(product == 0)),
        )

    def to_dict(self) -> dict[str, float | int | None]:
        return {
            "wins": self.wins,
            "losses": self.losses,
            "pushes": self.pushes,
            "graded": self.graded,
            "win_pct": self.win_pct,
            "roi": self.roi,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MarketRecord":
        return cls(
            wins=int(data.get("wins", 0)),
            losses=int(data.get("losses", 0)),
            pushes=int(data.get("pushes", 0)),
        )
