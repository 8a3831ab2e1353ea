"""Tests for oracle usage and cost tracking."""

import json
import threading
from datetime import date, datetime, timezone

import pytest

from warmline.utils.cost_tracking import (
    CostTracker,
    estimate_cost,
    get_cost_tracker,
    reset_tracker,
)


@pytest.fixture
def usage_file(tmp_path):
    """Provide a temp JSONL file for cost tracking."""
    return tmp_path / "usage" / "oracle_usage.jsonl"


@pytest.fixture
def tracker(usage_file):
    return CostTracker(usage_file)


class TestEstimateCost:
    """Pricing by model family."""

    def test_sonnet(self):
        assert estimate_cost("claude-sonnet-4-20250514", 1_000_000, 1_000_000) == 18.0

    def test_opus(self):
        assert estimate_cost("claude-opus-4-20250514", 1_000_000, 0) == 15.0

    def test_haiku(self):
        assert estimate_cost("claude-haiku-4-5", 0, 1_000_000) == 4.0

    def test_unknown_model_priced_as_sonnet(self):
        assert estimate_cost("mystery-model", 1_000_000, 0) == 3.0


class TestCostTracker:
    """JSONL log."""

    def test_record_creates_file(self, tracker, usage_file):
        record = tracker.record_call("decision_oracle", "claude-sonnet-4", 1500, 300)

        assert usage_file.exists()
        line = json.loads(usage_file.read_text(encoding="utf-8").strip())
        assert line["caller"] == "decision_oracle"
        assert line["input_tokens"] == 1500
        assert record.estimated_cost == pytest.approx(0.009)

    def test_records_round_trip_skips_corrupt_lines(self, tracker, usage_file):
        tracker.record_call("decision_oracle", "claude-sonnet-4", 10, 10)
        with open(usage_file, "a", encoding="utf-8") as f:
            f.write("not json\n\n")
        tracker.record_call("decision_oracle", "claude-sonnet-4", 20, 20)
        assert [r.input_tokens for r in tracker.records()] == [10, 20]

    def test_no_file_no_records(self, tracker):
        assert tracker.records() == []

    def test_summarize_today(self, tracker):
        tracker.record_call("decision_oracle", "claude-sonnet-4", 1_000_000, 0)
        tracker.record_call("other", "claude-sonnet-4", 0, 0)

        today = datetime.now(timezone.utc).date()
        summary = tracker.summarize(day=today)

        assert summary.period == today.isoformat()
        assert summary.calls == 2
        assert summary.cost == pytest.approx(3.0)
        assert summary.by_caller["decision_oracle"] == pytest.approx(3.0)

    def test_summarize_other_day_empty(self, tracker):
        tracker.record_call("decision_oracle", "claude-sonnet-4", 100, 100)
        assert tracker.summarize(day=date(2000, 1, 1)).calls == 0
        assert tracker.summarize().period == "all-time"

    def test_concurrent_writes(self, tracker):
        """Parallel decision units never interleave lines."""

        def write():
            for _ in range(20):
                tracker.record_call("decision_oracle", "claude-sonnet-4", 1, 1)

        threads = [threading.Thread(target=write) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(tracker.records()) == 80


class TestSingleton:
    def test_same_instance_until_reset(self, usage_file):
        first = get_cost_tracker(usage_file)
        assert get_cost_tracker() is first
        reset_tracker()
        assert get_cost_tracker(usage_file) is not first
