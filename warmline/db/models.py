"""Data models and enumerations for Warmline.

All enums stored as TEXT in SQLite.
Dataclasses use frozen=False for mutability during processing.

This module defines:
    - Enumerations for all categorical fields
    - The Opportunity tagged union (one dataclass per kind)
    - Dataclasses for attempts, tasks, messages, priorities and audit records
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional, Union

# =============================================================================
# ENUMERATIONS
# =============================================================================


class OpportunityKind(str, Enum):
    """Discriminator for the Opportunity union.

    The value doubles as the item_type used in rankings and oracle threads.
    """

    CONNECTOR_OPPORTUNITY = "connector_opportunity"
    CONNECTION_REQUEST = "connection_request"
    INTRODUCTION_OFFER = "introduction_offer"


class OpportunityStatus(str, Enum):
    """Where an opportunity sits in its lifecycle.

    Values:
        OPEN: Created upstream, never shown to the member
        PRESENTED: Shown once
        DORMANT: Shown twice with no response; out of the ranking pool
        ACCEPTED: Member said yes
        DECLINED: Member said no
        PAUSED: A sibling for the same prospect was accepted
        CANCELLED: A sibling for the same prospect was completed
        COMPLETED: Accepted and carried through
    """

    OPEN = "open"
    PRESENTED = "presented"
    DORMANT = "dormant"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ConnectionStrength(str, Enum):
    """Degree of connection between the member and a prospect."""

    FIRST = "first"
    SECOND = "second"
    THIRD = "third"
    UNKNOWN = "unknown"


class IntroRole(str, Enum):
    """The member's role in an introduction offer."""

    CONNECTOR = "connector"
    INTRODUCEE = "introducee"


class AttemptOutcome(str, Enum):
    """Outcome of one proactive engagement decision."""

    SENT = "sent"
    THROTTLED = "throttled"
    PAUSED = "paused"
    DECLINED = "declined"


class PresentationKind(str, Enum):
    """How an opportunity was shown to the member.

    DEDICATED: the message was about this item
    NATURAL: the item came up inside a broader conversation
    """

    DEDICATED = "dedicated"
    NATURAL = "natural"


class TaskStatus(str, Enum):
    """Scheduled task lifecycle. Cancellation is a status, never a delete."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TaskType(str, Enum):
    """Kinds of scheduled work."""

    REENGAGEMENT_CHECK = "reengagement_check"
    FOLLOW_UP = "follow_up"


class MessageDirection(str, Enum):
    """Which side of the conversation a message came from."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class RequestStatus(str, Enum):
    """State of something the member asked for."""

    OPEN = "open"
    FULFILLED = "fulfilled"
    WITHDRAWN = "withdrawn"


# Item types that are not opportunities but can still be ranked or addressed
GOAL_ITEM_TYPE = "goal"
REQUEST_ITEM_TYPE = "outstanding_request"

# Statuses eligible for ranking and presentation
RANKABLE_STATUSES = frozenset({OpportunityStatus.OPEN, OpportunityStatus.PRESENTED})

TERMINAL_STATUSES = frozenset(
    {
        OpportunityStatus.ACCEPTED,
        OpportunityStatus.DECLINED,
        OpportunityStatus.COMPLETED,
        OpportunityStatus.CANCELLED,
        OpportunityStatus.DORMANT,
    }
)


# =============================================================================
# OPPORTUNITIES
# =============================================================================


@dataclass
class Opportunity:
    """Shared fields of every opportunity kind.

    Never instantiated directly; use one of the three subclasses.

    Attributes:
        id: Database ID
        owner_user_id: Member the opportunity belongs to
        counterpart_descriptor: Short description of the other party
        status: Lifecycle status
        value_score: Last computed score
        presentation_count: Times shown to the member
        last_presented_at: Most recent exposure
        dormant_at: When it went dormant
        created_at: When the upstream producer created it
        updated_at: Last mutation
    """

    kind: ClassVar[OpportunityKind]

    id: Optional[int] = None
    owner_user_id: str = ""
    counterpart_descriptor: Optional[str] = None
    status: OpportunityStatus = OpportunityStatus.OPEN
    value_score: int = 0
    presentation_count: int = 0
    last_presented_at: Optional[datetime] = None
    dormant_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def item_type(self) -> str:
        return self.kind.value

    @property
    def item_id(self) -> str:
        return str(self.id)


@dataclass
class ConnectorOpportunity(Opportunity):
    """A prospect the member could connect someone to, for a bounty."""

    kind: ClassVar[OpportunityKind] = OpportunityKind.CONNECTOR_OPPORTUNITY

    prospect_id: Optional[str] = None
    bounty_credits: int = 0
    connection_strength: ConnectionStrength = ConnectionStrength.UNKNOWN


@dataclass
class ConnectionRequest(Opportunity):
    """Someone asking to be connected to the member."""

    kind: ClassVar[OpportunityKind] = OpportunityKind.CONNECTION_REQUEST

    vouch_count: int = 0
    credits_spent: int = 0


@dataclass
class IntroductionOffer(Opportunity):
    """An introduction the member is part of, on either side."""

    kind: ClassVar[OpportunityKind] = OpportunityKind.INTRODUCTION_OFFER

    role: IntroRole = IntroRole.INTRODUCEE
    bounty_credits: int = 0


AnyOpportunity = Union[ConnectorOpportunity, ConnectionRequest, IntroductionOffer]

OPPORTUNITY_CLASSES: dict[OpportunityKind, type] = {
    OpportunityKind.CONNECTOR_OPPORTUNITY: ConnectorOpportunity,
    OpportunityKind.CONNECTION_REQUEST: ConnectionRequest,
    OpportunityKind.INTRODUCTION_OFFER: IntroductionOffer,
}


@dataclass
class GoalCandidate:
    """Externally supplied, already-scored candidate merged into a ranking.

    Attributes:
        item_id: Caller's identifier for the goal
        value_score: Score assigned by the caller
        description: What the goal is
        created_at: Tie-break timestamp
    """

    item_id: str
    value_score: int
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def item_type(self) -> str:
        return GOAL_ITEM_TYPE


# =============================================================================
# MEMBERS AND CONVERSATION
# =============================================================================


@dataclass
class User:
    """A network member.

    Attributes:
        id: Stable member identifier
        display_name: Name used in rendered messages
        profile: Profile facts handed to the oracle
        manual_override_at: Last time an operator lifted a strike pause
        created_at: When the member joined
    """

    id: str
    display_name: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict)
    manual_override_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class UserMessage:
    """One message in a member's conversation."""

    id: Optional[int] = None
    user_id: str = ""
    direction: MessageDirection = MessageDirection.INBOUND
    content: str = ""
    created_at: Optional[datetime] = None


@dataclass
class OutstandingRequest:
    """Something the member asked for that has not been resolved."""

    id: Optional[int] = None
    user_id: str = ""
    description: str = ""
    status: RequestStatus = RequestStatus.OPEN
    created_at: Optional[datetime] = None

    @property
    def item_type(self) -> str:
        return REQUEST_ITEM_TYPE

    @property
    def item_id(self) -> str:
        return str(self.id)


# =============================================================================
# ENGAGEMENT RECORDS
# =============================================================================


@dataclass
class EngagementAttempt:
    """One proactive-contact decision. Append-only.

    Attributes:
        id: Database ID
        user_id: Member considered for contact
        outcome: sent, throttled, paused or declined
        trigger_id: Idempotency key component, unique per user
        metadata: Reasoning, thread refs, throttle numbers
        created_at: Decision time
    """

    id: Optional[int] = None
    user_id: str = ""
    outcome: AttemptOutcome = AttemptOutcome.SENT
    trigger_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


@dataclass
class EngagementTask:
    """Scheduled work item.

    Attributes:
        id: Database ID
        user_id: Member the task is for
        task_type: reengagement_check or follow_up
        status: pending, processing, completed, cancelled, failed
        scheduled_for: When the task becomes due
        item_type: Referenced item type (follow-ups only)
        item_id: Referenced item id (follow-ups only)
        context: Why the task was scheduled
        result: Outcome or cancellation reason
        created_at: When it was scheduled
        updated_at: Last status change
    """

    id: Optional[int] = None
    user_id: str = ""
    task_type: TaskType = TaskType.REENGAGEMENT_CHECK
    status: TaskStatus = TaskStatus.PENDING
    scheduled_for: Optional[datetime] = None
    item_type: Optional[str] = None
    item_id: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UserPriorityEntry:
    """One row of a member's ranked priority list."""

    user_id: str
    rank: int
    item_type: str
    item_id: str
    value_score: int
    status: str
    version: int = 0


@dataclass
class AuditRecord:
    """Immutable record of a state-changing decision.

    Attributes:
        actor_component: Component that acted (throttle, presentation, ...)
        action: What it did
        user_id: Member affected
        item_type: Referenced item type
        item_id: Referenced item id
        status_before: Status before the change
        status_after: Status after the change
        details: Extra structured data
        created_at: When it happened
    """

    actor_component: str
    action: str
    user_id: Optional[str] = None
    item_type: Optional[str] = None
    item_id: Optional[str] = None
    status_before: Optional[str] = None
    status_after: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[datetime] = None
