"""Autonomous layer: decision orchestration, task worker and background loop."""

from warmline.autonomous.decision import (
    DecisionOrchestrator,
    DecisionOutcome,
    DecisionResult,
    ThreadDescriptor,
)
from warmline.autonomous.orchestrator import Orchestrator
from warmline.autonomous.worker import EngagementWorker, SweepResult

__all__ = [
    "DecisionOrchestrator",
    "DecisionOutcome",
    "DecisionResult",
    "EngagementWorker",
    "Orchestrator",
    "SweepResult",
    "ThreadDescriptor",
]
