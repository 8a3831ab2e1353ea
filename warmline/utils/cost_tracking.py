"""Decision Oracle usage and cost tracking.

One JSONL line per Claude call: caller, model, tokens, estimated cost.
Summaries are computed by reading the file back.

Usage:
    from warmline.utils.cost_tracking import get_cost_tracker

    tracker = get_cost_tracker()
    tracker.record_call("decision_oracle", "claude-sonnet-4-20250514", 1500, 300)
    print(tracker.summarize(day=date.today()))
"""

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from warmline.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_USAGE_FILE = Path.home() / ".warmline" / "oracle_usage.jsonl"

# USD per million tokens: model family -> (input, output)
_MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus": (15.0, 75.0),
    "claude-sonnet": (3.0, 15.0),
    "claude-haiku": (0.80, 4.0),
}
_FALLBACK_PRICING = _MODEL_PRICING["claude-sonnet"]


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimated USD cost of one call. Unknown models are priced as sonnet."""
    input_rate, output_rate = next(
        (rates for family, rates in _MODEL_PRICING.items() if family in model),
        _FALLBACK_PRICING,
    )
    return (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000


@dataclass
class UsageRecord:
    """One recorded call."""

    timestamp: str
    caller: str
    model: str
    input_tokens: int
    output_tokens: int
    estimated_cost: float


@dataclass
class UsageSummary:
    """Totals over a set of records."""

    period: str
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    by_caller: dict[str, float] = field(default_factory=dict)


class CostTracker:
    """Thread-safe JSONL usage log."""

    def __init__(self, usage_file: Optional[Path] = None):
        self.usage_file = usage_file or DEFAULT_USAGE_FILE
        self._lock = threading.Lock()

    def record_call(
        self,
        caller: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> UsageRecord:
        """Append one call to the log."""
        record = UsageRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            caller=caller,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost=round(estimate_cost(model, input_tokens, output_tokens), 6),
        )

        with self._lock:
            self.usage_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.usage_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(record)) + "\n")

        logger.debug(
            "Oracle call recorded",
            extra={
                "context": {
                    "caller": caller,
                    "tokens": input_tokens + output_tokens,
                    "cost": record.estimated_cost,
                }
            },
        )
        return record

    def records(self) -> list[UsageRecord]:
        """Read every record back. Corrupt lines are skipped."""
        if not self.usage_file.exists():
            return []
        result = []
        with open(self.usage_file, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    result.append(UsageRecord(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    logger.debug("Skipping corrupt usage line")
        return result

    def summarize(self, day: Optional[date] = None) -> UsageSummary:
        """Totals for one UTC day, or for all time when day is None."""
        prefix = day.isoformat() if day else ""
        summary = UsageSummary(period=prefix or "all-time")
        for r in self.records():
            if not r.timestamp.startswith(prefix):
                continue
            summary.calls += 1
            summary.input_tokens += r.input_tokens
            summary.output_tokens += r.output_tokens
            summary.cost += r.estimated_cost
            summary.by_caller[r.caller] = summary.by_caller.get(r.caller, 0.0) + r.estimated_cost
        summary.cost = round(summary.cost, 6)
        return summary


# Module-level singleton
_tracker: Optional[CostTracker] = None
_tracker_lock = threading.Lock()


def get_cost_tracker(usage_file: Optional[Path] = None) -> CostTracker:
    """Get the singleton CostTracker.

    Args:
        usage_file: Only used when the singleton is first created
    """
    global _tracker
    with _tracker_lock:
        if _tracker is None:
            _tracker = CostTracker(usage_file)
        return _tracker


def reset_tracker() -> None:
    """Reset the singleton (for testing)."""
    global _tracker
    with _tracker_lock:
        _tracker = None
