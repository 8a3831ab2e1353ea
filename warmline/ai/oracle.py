"""Decision Oracle contract.

The oracle decides whether to message a member and which threads to
address, once the throttle has allowed contact. It only ever sees a
context bundle and only ever returns a decision; it cannot mutate state.

Request:
    {ranked_items, outstanding_requests, recent_messages, profile_facts,
     reengagement_metadata}

Response:
    {should_message, reasoning, extend_days?, threads_to_address?:
     [{item_type, item_id, priority, guidance}]}

``reasoning`` is kept for audit only and never drives control flow.

Implementations:
    - ClaudeDecisionOracle (warmline.ai.claude_oracle): production
    - ScriptedDecisionOracle (warmline.ai.scripted_oracle): deterministic
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from warmline.core.exceptions import OracleUnavailableError


@dataclass
class OracleContext:
    """Everything the oracle is allowed to see about one member."""

    user_id: str
    ranked_items: list[dict[str, Any]] = field(default_factory=list)
    outstanding_requests: list[dict[str, Any]] = field(default_factory=list)
    recent_messages: list[dict[str, Any]] = field(default_factory=list)
    profile_facts: dict[str, Any] = field(default_factory=dict)
    reengagement_metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ThreadSelection:
    """One thread the oracle wants addressed."""

    item_type: str
    item_id: str
    priority: int = 0
    guidance: str = ""


@dataclass
class OracleDecision:
    """The oracle's answer."""

    should_message: bool
    reasoning: str = ""
    extend_days: Optional[int] = None
    threads: list[ThreadSelection] = field(default_factory=list)


class DecisionOracle(ABC):
    """Single-method decision interface."""

    #: Short name recorded with usage and audit data
    name: str = "oracle"

    @abstractmethod
    def decide(self, context: OracleContext) -> OracleDecision:
        """Return a decision for one member.

        Raises:
            OracleTimeoutError: If the decision did not arrive in time
            OracleUnavailableError: If no usable decision can be produced
        """


def parse_decision(payload: Any) -> OracleDecision:
    """Build an OracleDecision from a raw response object.

    Accepts ``item_id`` or ``id`` and ``guidance`` or ``message_guidance``
    for each thread. Threads missing a type or id are skipped.

    Raises:
        OracleUnavailableError: If the payload is not a decision
    """
    if not isinstance(payload, dict):
        raise OracleUnavailableError(f"Decision must be an object, got {type(payload).__name__}")
    if not isinstance(payload.get("should_message"), bool):
        raise OracleUnavailableError("Decision is missing boolean should_message")

    extend_days = payload.get("extend_days")
    if extend_days is not None:
        try:
            extend_days = int(extend_days)
        except (TypeError, ValueError) as e:
            raise OracleUnavailableError(f"extend_days is not an integer: {extend_days!r}") from e
        if extend_days <= 0:
            extend_days = None

    threads: list[ThreadSelection] = []
    for raw in payload.get("threads_to_address") or []:
        if not isinstance(raw, dict):
            continue
        item_type = raw.get("item_type") or raw.get("type")
        item_id = raw.get("item_id", raw.get("id"))
        if not item_type or item_id is None:
            continue
        try:
            priority = int(raw.get("priority", 0))
        except (TypeError, ValueError):
            priority = 0
        threads.append(
            ThreadSelection(
                item_type=str(item_type),
                item_id=str(item_id),
                priority=priority,
                guidance=str(raw.get("guidance") or raw.get("message_guidance") or ""),
            )
        )

    return OracleDecision(
        should_message=payload["should_message"],
        reasoning=str(payload.get("reasoning") or ""),
        extend_days=extend_days,
        threads=threads,
    )
