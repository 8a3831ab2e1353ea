"""Opportunity value scoring.

Pure functions: no database access, no clock reads. ``now`` is passed in
by the caller so the recency bonus is deterministic.

Formulas:
    - Connector opportunity: 50 + min(bounty/2, 30) + connection bonus + recency
    - Connection request: 50 + vouches*20 + min(credits/10, 15) + recency
    - Introduction offer: 70 (connector) or 55 (introducee) + min(bounty/2, 30)

Halves and tenths are floored. Missing values contribute zero. The result
is never negative; there is no upper clamp.

Usage:
    from warmline.engine.scoring import score

    value = score(opportunity, now)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from warmline.core.clock import ensure_utc
from warmline.core.exceptions import ValidationError
from warmline.db.models import (
    AnyOpportunity,
    ConnectionRequest,
    ConnectionStrength,
    ConnectorOpportunity,
    IntroductionOffer,
    IntroRole,
)

# =============================================================================
# SCORING CONSTANTS
# =============================================================================


@dataclass(frozen=True)
class ScoreWeights:
    """Scoring constants, grouped so tests can vary them."""

    base: int = 50
    bounty_cap: int = 30
    vouch_weight: int = 20
    credits_divisor: int = 10
    credits_cap: int = 15
    recency_bonus: int = 10
    recency_days: int = 3
    intro_connector_base: int = 70
    intro_introducee_base: int = 55


DEFAULT_WEIGHTS = ScoreWeights()

CONNECTION_BONUS: dict[ConnectionStrength, int] = {
    ConnectionStrength.FIRST: 15,
    ConnectionStrength.SECOND: 5,
    ConnectionStrength.THIRD: 0,
    ConnectionStrength.UNKNOWN: 0,
}


# =============================================================================
# COMPONENTS
# =============================================================================


def age_in_days(created_at: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days elapsed since creation, or None if unknown."""
    if created_at is None:
        return None
    delta = ensure_utc(now) - ensure_utc(created_at)
    return delta.days


def recency_bonus(
    created_at: Optional[datetime], now: datetime, weights: ScoreWeights = DEFAULT_WEIGHTS
) -> int:
    """Bonus for items younger than ``weights.recency_days``."""
    age = age_in_days(created_at, now)
    if age is None:
        return 0
    return weights.recency_bonus if age < weights.recency_days else 0


def bounty_component(bounty_credits: Optional[int], weights: ScoreWeights = DEFAULT_WEIGHTS) -> int:
    """Half the bounty, floored, capped."""
    bounty = max(bounty_credits or 0, 0)
    return min(bounty // 2, weights.bounty_cap)


def connection_bonus(strength: Optional[Union[ConnectionStrength, str]]) -> int:
    """Bonus by degree of connection. Unknown values score zero."""
    if strength is None:
        return 0
    try:
        return CONNECTION_BONUS[ConnectionStrength(strength)]
    except ValueError:
        return 0


# =============================================================================
# SCORING
# =============================================================================


def score(
    opportunity: AnyOpportunity,
    now: datetime,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> int:
    """Score one opportunity.

    Args:
        opportunity: Any opportunity kind
        now: Reference time for the recency bonus
        weights: Scoring constants

    Returns:
        Non-negative integer value score

    Raises:
        ValidationError: If the opportunity is not one of the three kinds
    """
    if isinstance(opportunity, ConnectorOpportunity):
        total = (
            weights.base
            + bounty_component(opportunity.bounty_credits, weights)
            + connection_bonus(opportunity.connection_strength)
            + recency_bonus(opportunity.created_at, now, weights)
        )
    elif isinstance(opportunity, ConnectionRequest):
        credits = max(opportunity.credits_spent or 0, 0)
        total = (
            weights.base
            + (opportunity.vouch_count or 0) * weights.vouch_weight
            + min(credits // weights.credits_divisor, weights.credits_cap)
            + recency_bonus(opportunity.created_at, now, weights)
        )
    elif isinstance(opportunity, IntroductionOffer):
        base = (
            weights.intro_connector_base
            if opportunity.role == IntroRole.CONNECTOR
            else weights.intro_introducee_base
        )
        total = base + bounty_component(opportunity.bounty_credits, weights)
    else:
        raise ValidationError(f"Cannot score {type(opportunity).__name__}")

    return max(total, 0)
