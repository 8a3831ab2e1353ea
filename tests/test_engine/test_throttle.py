"""Tests for the engagement throttle (warmline/engine/throttle.py).

Covers:
    - Minimum interval boundary (just before / exactly at 7 days)
    - Strike cap after three unanswered sends
    - Inbound messages resetting the streak, with and without a response window
    - Manual override
    - Idempotent triggers
"""

from datetime import timedelta

import pytest

from warmline.core.exceptions import NotFoundError
from warmline.db.database import Database
from warmline.db.models import (
    AttemptOutcome,
    EngagementAttempt,
    EngagementTask,
    TaskStatus,
    TaskType,
    User,
    UserMessage,
)
from warmline.engine.throttle import REASON_INTERVAL, REASON_STRIKE_CAP, EngagementThrottle


def _sent(db: Database, when, trigger: str) -> None:
    db.record_attempt(
        EngagementAttempt(
            user_id="u-1", outcome=AttemptOutcome.SENT, trigger_id=trigger, created_at=when
        )
    )


def _pending_checks(db: Database) -> list:
    return [
        t
        for t in db.get_tasks(user_id="u-1", status=TaskStatus.PENDING)
        if t.task_type == TaskType.REENGAGEMENT_CHECK
    ]


@pytest.fixture
def throttle(memory_db: Database, user: User) -> EngagementThrottle:
    return EngagementThrottle(memory_db)


# ===========================================================================
# Minimum interval
# ===========================================================================


class TestInterval:
    """No two sends within seven days."""

    def test_first_contact_allowed(self, throttle):
        """A member never contacted is allowed."""
        decision = throttle.check("u-1", "t-1")
        assert decision.allowed is True
        assert decision.days_since_last is None

    def test_blocked_just_before_seven_days(self, memory_db: Database, throttle, clock):
        """One microsecond short of seven days is still blocked."""
        sent_at = clock.now()
        _sent(memory_db, sent_at, "s-1")
        clock.set(sent_at + timedelta(days=7) - timedelta(microseconds=1))

        decision = throttle.check("u-1", "t-1")

        assert decision.allowed is False
        assert decision.reason == REASON_INTERVAL
        assert decision.outcome == AttemptOutcome.THROTTLED
        assert decision.next_check_at == clock.now() + timedelta(days=1)
        attempt = memory_db.get_attempt_by_trigger("u-1", "t-1")
        assert attempt.outcome == AttemptOutcome.THROTTLED

    def test_allowed_exactly_at_seven_days(self, memory_db: Database, throttle, clock):
        """At T + 7 days the interval rule no longer applies."""
        _sent(memory_db, clock.now(), "s-1")
        clock.advance(days=7)
        assert throttle.check("u-1", "t-1").allowed is True

    def test_throttle_schedules_remaining_wait(self, memory_db: Database, throttle, clock):
        """Two days after a send the next check lands five days out."""
        _sent(memory_db, clock.now(), "s-1")
        clock.advance(days=2)
        decision = throttle.check("u-1", "t-1")
        checks = _pending_checks(memory_db)
        assert len(checks) == 1
        assert checks[0].scheduled_for == decision.next_check_at == clock.now() + timedelta(days=5)

    def test_throttle_audited(self, memory_db: Database, throttle, clock):
        _sent(memory_db, clock.now(), "s-1")
        clock.advance(days=1)
        throttle.check("u-1", "t-1")
        record = memory_db.get_audit_log(user_id="u-1", action="throttle_decision")[0]
        assert record.details["outcome"] == "throttled"
        assert record.details["reason"] == "interval"

    def test_allowed_decision_audited(self, memory_db: Database, throttle, clock):
        """An allowed check leaves one audit row and no attempt."""
        _sent(memory_db, clock.now(), "s-1")
        clock.advance(days=9)

        assert throttle.check("u-1", "t-1").allowed is True

        records = memory_db.get_audit_log(user_id="u-1", action="throttle_decision")
        assert len(records) == 1
        assert records[0].details["outcome"] == "allowed"
        assert records[0].details["unanswered_count"] == 1
        assert records[0].details["days_since_last"] == 9.0
        assert records[0].details["trigger_id"] == "t-1"
        assert memory_db.get_attempt_by_trigger("u-1", "t-1") is None

    def test_is_allowed_records_nothing(self, memory_db: Database, throttle, clock):
        """The read-only check writes no attempt and no task."""
        _sent(memory_db, clock.now(), "s-1")
        assert throttle.is_allowed("u-1") is False
        assert len(memory_db.get_attempts("u-1")) == 1
        assert _pending_checks(memory_db) == []


# ===========================================================================
# Strike cap
# ===========================================================================


class TestStrikeCap:
    """Three unanswered sends pause the member."""

    def _three_unanswered(self, db: Database, clock) -> None:
        for n in range(3):
            _sent(db, clock.now(), f"s-{n}")
            clock.advance(days=8)

    def test_fourth_check_paused(self, memory_db: Database, throttle, clock):
        """The check after three unanswered sends is paused with no future task."""
        self._three_unanswered(memory_db, clock)
        memory_db.create_task(
            EngagementTask(user_id="u-1", scheduled_for=clock.now() + timedelta(days=1))
        )

        decision = throttle.check("u-1", "t-4")

        assert decision.allowed is False
        assert decision.reason == REASON_STRIKE_CAP
        assert decision.outcome == AttemptOutcome.PAUSED
        assert decision.requires_manual_override is True
        assert decision.next_check_at is None
        assert decision.unanswered_count == 3
        assert _pending_checks(memory_db) == []
        record = memory_db.get_audit_log(user_id="u-1", action="throttle_decision")[-1]
        assert record.details["requiresManualOverride"] is True

    def test_two_unanswered_still_allowed(self, memory_db: Database, throttle, clock):
        for n in range(2):
            _sent(memory_db, clock.now(), f"s-{n}")
            clock.advance(days=8)
        decision = throttle.check("u-1", "t-3")
        assert decision.allowed is True
        assert decision.unanswered_count == 2

    def test_reply_resets_streak(self, memory_db: Database, throttle, clock):
        """A reply after the newest send means the streak is zero."""
        self._three_unanswered(memory_db, clock)
        memory_db.record_message(UserMessage(user_id="u-1", content="sorry, busy"))
        decision = throttle.check("u-1", "t-4")
        assert decision.allowed is True
        assert decision.unanswered_count == 0

    def test_reply_between_sends_counts_only_later_sends(
        self, memory_db: Database, throttle, clock
    ):
        """Sends before a reply are answered; only later ones count."""
        _sent(memory_db, clock.now(), "s-0")
        clock.advance(days=1)
        memory_db.record_message(UserMessage(user_id="u-1", content="thanks"))
        clock.advance(days=7)
        for n in range(1, 3):
            _sent(memory_db, clock.now(), f"s-{n}")
            clock.advance(days=8)
        decision = throttle.check("u-1", "t-x")
        assert decision.allowed is True
        assert decision.unanswered_count == 2

    def test_sends_outside_window_ignored(self, memory_db: Database, throttle, clock):
        """Sends older than the 90-day window do not count."""
        self._three_unanswered(memory_db, clock)
        clock.advance(days=90)
        assert throttle.check("u-1", "t-4").allowed is True

    def test_response_window_limits_answers(self, memory_db: Database, user: User, clock):
        """With a 2-day window, a reply a week later does not answer the send."""
        throttle = EngagementThrottle(memory_db, response_window_days=2)
        for n in range(3):
            _sent(memory_db, clock.now(), f"s-{n}")
            if n == 2:
                clock.advance(days=5)
                memory_db.record_message(UserMessage(user_id="u-1", content="late"))
            clock.advance(days=8)
        decision = throttle.check("u-1", "t-4")
        assert decision.reason == REASON_STRIKE_CAP

    def test_unconstrained_window_accepts_late_reply(self, memory_db: Database, throttle, clock):
        """By default any later reply answers the send."""
        for n in range(3):
            _sent(memory_db, clock.now(), f"s-{n}")
            if n == 2:
                clock.advance(days=5)
                memory_db.record_message(UserMessage(user_id="u-1", content="late"))
            clock.advance(days=8)
        assert throttle.check("u-1", "t-4").allowed is True


# ===========================================================================
# Manual override
# ===========================================================================


class TestManualOverride:
    def test_clear_pause_restarts_streak(self, memory_db: Database, throttle, clock):
        """After an override, earlier sends stop counting and a check is due now."""
        for n in range(3):
            _sent(memory_db, clock.now(), f"s-{n}")
            clock.advance(days=8)
        assert throttle.check("u-1", "t-4").reason == REASON_STRIKE_CAP

        task_id = throttle.clear_pause("u-1", operator="ops@warmline")

        assert memory_db.get_task(task_id).scheduled_for == clock.now()
        assert throttle.check("u-1", "t-5").allowed is True
        assert memory_db.get_audit_log(user_id="u-1", action="manual_override")
        # History is untouched
        assert len(memory_db.get_attempts("u-1", outcome=AttemptOutcome.SENT)) == 3

    def test_unknown_user(self, throttle):
        with pytest.raises(NotFoundError):
            throttle.clear_pause("ghost")


# ===========================================================================
# Idempotency
# ===========================================================================


class TestIdempotency:
    def test_same_trigger_recorded_once(self, memory_db: Database, throttle, clock):
        """A retried trigger is reported as a duplicate and records nothing new."""
        _sent(memory_db, clock.now(), "s-1")
        clock.advance(days=1)
        throttle.check("u-1", "t-1")
        again = throttle.check("u-1", "t-1")
        assert again.duplicate is True
        assert len(memory_db.get_attempts("u-1", outcome=AttemptOutcome.THROTTLED)) == 1

    def test_unknown_user(self, throttle):
        with pytest.raises(NotFoundError):
            throttle.check("ghost", "t-1")
