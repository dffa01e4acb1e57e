from __future__ import annotations

"""
Conviction tiers for spread picks.

The policy is data: an ordered list of rules (first match wins, most
restrictive first) plus a per-side team denylist. Policies live as JSON under
config/conviction/<sport>.json so they can be reviewed and tested without
touching the scoring code. The tier is advisory and never changes a grade.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from sports_forecaster.config import DATA_CONFIG, get_sport_profile
from sports_forecaster.evaluation.grading import AWAY, HOME, pick_spread_side

logger = logging.getLogger(__name__)

ELITE = "elite"
HIGH = "high"
MODERATE = "moderate"
LOW = "low"
TIERS = (ELITE, HIGH, MODERATE, LOW)


@dataclass(frozen=True)
class ConvictionSignals:
    """
    Boolean/numeric inputs to the tier table for one pick.

    Attributes:
        pick: "home" or "away".
        edge: |predicted spread - market spread|.
        strong_edge: edge is at or above the policy's edge threshold.
        rating_gap: |home rating - away rating|.
        picks_market_favorite: The picked side is favored by the market line.
        picks_rating_favorite: The picked side has the higher rating.
        denylisted: The picked team is on the denylist for its side.
    """

    pick: str
    edge: float
    strong_edge: bool
    rating_gap: float
    picks_market_favorite: bool
    picks_rating_favorite: bool
    denylisted: bool


@dataclass(frozen=True)
class ConvictionRule:
    """One row of the tier table; unset conditions always match."""

    tier: str
    strong_edge: bool | None = None
    min_edge: float | None = None
    min_rating_gap: float | None = None
    market_favorite: bool | None = None
    rating_favorite: bool | None = None
    avoid_denylist: bool = False

    def matches(self, signals: ConvictionSignals) -> bool:
        if self.strong_edge is not None and signals.strong_edge != self.strong_edge:
            return False
        if self.min_edge is not None and signals.edge < self.min_edge:
            return False
        if self.min_rating_gap is not None and signals.rating_gap < self.min_rating_gap:
            return False
        if self.market_favorite is not None and signals.picks_market_favorite != self.market_favorite:
            return False
        if self.rating_favorite is not None and signals.picks_rating_favorite != self.rating_favorite:
            return False
        if self.avoid_denylist and signals.denylisted:
            return False
        return True


@dataclass(frozen=True)
class ConvictionPolicy:
    """
    Tier table for one sport.

    edge_threshold is the spread edge (points, or goals for hockey) that
    counts as a strong signal. The shipped values are inherited from the
    league-specific admin tooling and still await product-owner sign-off.
    """

    rules: tuple[ConvictionRule, ...] = ()
    home_denylist: frozenset[str] = field(default_factory=frozenset)
    away_denylist: frozenset[str] = field(default_factory=frozenset)
    default_tier: str = LOW
    edge_threshold: float = 5.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], edge_threshold: float = 5.0) -> "ConvictionPolicy":
        """Build a policy; a top-level "edge_threshold" key wins over the argument."""
        rules = []
        for raw in data.get("rules", []):
            tier = raw.get("tier")
            if tier not in TIERS:
                raise ValueError(f"Unknown conviction tier '{tier}'. Expected one of {TIERS}")
            unknown = set(raw) - set(ConvictionRule.__dataclass_fields__)
            if unknown:
                raise ValueError(f"Unknown conviction rule keys: {sorted(unknown)}")
            rules.append(ConvictionRule(**raw))

        default_tier = data.get("default_tier", LOW)
        if default_tier not in TIERS:
            raise ValueError(f"Unknown default tier '{default_tier}'. Expected one of {TIERS}")

        denylist = data.get("denylist", {})
        return cls(
            rules=tuple(rules),
            home_denylist=frozenset(denylist.get(HOME, ())),
            away_denylist=frozenset(denylist.get(AWAY, ())),
            default_tier=default_tier,
            edge_threshold=float(data.get("edge_threshold", edge_threshold)),
        )

    def is_denylisted(self, team: str, side: str) -> bool:
        if side == HOME:
            return team in self.home_denylist
        return team in self.away_denylist

    def tier_for(self, signals: ConvictionSignals) -> str:
        for rule in self.rules:
            if rule.matches(signals):
                return rule.tier
        return self.default_tier


def load_conviction_policy(sport: str, conviction_dir: Path | None = None) -> ConvictionPolicy:
    """
    Read config/conviction/<sport>.json.

    The sport profile's edge threshold is the default; an absent file gives
    a policy with no rules, so every pick lands in the default tier.
    """
    profile = get_sport_profile(sport)
    if conviction_dir is None:
        conviction_dir = DATA_CONFIG.conviction_dir
    path = Path(conviction_dir) / f"{profile.sport}.json"
    if not path.exists():
        logger.warning("No conviction policy at %s; every pick will be '%s'.", path, LOW)
        return ConvictionPolicy(edge_threshold=profile.edge_threshold)
    with path.open("r", encoding="utf-8") as fh:
        return ConvictionPolicy.from_dict(json.load(fh), edge_threshold=profile.edge_threshold)


class ConvictionScorer:
    """Turns a spread pick into a conviction tier using a ConvictionPolicy."""

    def __init__(self, policy: ConvictionPolicy) -> None:
        self.policy = policy

    def signals(
        self,
        predicted_spread: float,
        market_spread: float,
        home_rating: float,
        away_rating: float,
        home_team: str,
        away_team: str,
    ) -> ConvictionSignals | None:
        pick = pick_spread_side(predicted_spread, market_spread)
        if pick is None:
            return None

        if market_spread < 0:
            market_favorite = HOME
        elif market_spread > 0:
            market_favorite = AWAY
        else:
            market_favorite = None

        if home_rating > away_rating:
            rating_favorite = HOME
        elif home_rating < away_rating:
            rating_favorite = AWAY
        else:
            rating_favorite = None

        team = home_team if pick == HOME else away_team
        edge = abs(predicted_spread - market_spread)
        return ConvictionSignals(
            pick=pick,
            edge=edge,
            strong_edge=edge >= self.policy.edge_threshold,
            rating_gap=abs(home_rating - away_rating),
            picks_market_favorite=pick == market_favorite,
            picks_rating_favorite=pick == rating_favorite,
            denylisted=self.policy.is_denylisted(team, pick),
        )

    def score(
        self,
        predicted_spread: float,
        market_spread: float | None,
        home_rating: float,
        away_rating: float,
        home_team: str,
        away_team: str,
    ) -> str | None:
        """Tier for the spread pick, or None when there is no line or no pick."""
        if market_spread is None:
            return None
        signals = self.signals(
            predicted_spread, market_spread, home_rating, away_rating, home_team, away_team
        )
        if signals is None:
            return None
        return self.policy.tier_for(signals)
