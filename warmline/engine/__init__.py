"""Engine package - Business logic layer.

Modules:
    - scoring: Opportunity value scoring
    - ranking: Per-member priority ranking
    - presentation: Exposure counting and dormancy
    - conflicts: Sibling pause and cancel
    - throttle: Interval and strike-cap pacing
    - follow_ups: Task scheduling
    - responses: Accept, decline, complete
"""

from warmline.engine.conflicts import ConflictResolver
from warmline.engine.presentation import PresentationResult, PresentationTracker
from warmline.engine.ranking import RankingAggregator, RankingResult
from warmline.engine.responses import (
    accept_opportunity,
    complete_opportunity,
    decline_opportunity,
    record_user_message,
)
from warmline.engine.scoring import score
from warmline.engine.throttle import EngagementThrottle, ThrottleDecision

__all__ = [
    "ConflictResolver",
    "EngagementThrottle",
    "PresentationResult",
    "PresentationTracker",
    "RankingAggregator",
    "RankingResult",
    "ThrottleDecision",
    "accept_opportunity",
    "complete_opportunity",
    "decline_opportunity",
    "record_user_message",
    "score",
]
