"""Deterministic Decision Oracle.

Returns pre-programmed decisions, or raises pre-programmed errors, and
records every context it was given. Used by tests and by the CLI when
``WARMLINE_ORACLE=scripted``.

Usage:
    oracle = ScriptedDecisionOracle()
    oracle.queue(OracleDecision(should_message=False, extend_days=14))
    oracle.queue(OracleTimeoutError("slow"))
"""

import threading
from collections import deque
from typing import Callable, Optional, Union

from warmline.ai.oracle import DecisionOracle, OracleContext, OracleDecision, ThreadSelection
from warmline.core.exceptions import OracleError

Scripted = Union[OracleDecision, OracleError, Callable[[OracleContext], OracleDecision]]


def top_ranked_policy(context: OracleContext, max_threads: int = 1) -> OracleDecision:
    """Message about the highest-ranked items, or wait when there are none."""
    if not context.ranked_items:
        return OracleDecision(should_message=False, reasoning="nothing ranked")
    threads = [
        ThreadSelection(
            item_type=item["item_type"],
            item_id=str(item["item_id"]),
            priority=position,
        )
        for position, item in enumerate(context.ranked_items[:max_threads], start=1)
    ]
    return OracleDecision(should_message=True, reasoning="top ranked", threads=threads)


class ScriptedDecisionOracle(DecisionOracle):
    """Oracle that replays a script.

    Queued entries are consumed first in order. When the queue is empty the
    default policy is used.
    """

    name = "scripted_oracle"

    def __init__(
        self,
        script: Optional[list[Scripted]] = None,
        default: Optional[Callable[[OracleContext], OracleDecision]] = None,
    ):
        self._queue: deque[Scripted] = deque(script or [])
        self._default = default or top_ranked_policy
        self._lock = threading.Lock()
        self.calls: list[OracleContext] = []

    def queue(self, entry: Scripted) -> None:
        """Append a decision, error or callable to the script."""
        with self._lock:
            self._queue.append(entry)

    def decide(self, context: OracleContext) -> OracleDecision:
        with self._lock:
            self.calls.append(context)
            entry: Scripted = self._queue.popleft() if self._queue else self._default

        if isinstance(entry, OracleError):
            raise entry
        if isinstance(entry, OracleDecision):
            return entry
        return entry(context)
