"""Tests for the oracle contract and decision parsing."""

import pytest

from warmline.ai import build_oracle
from warmline.ai.claude_oracle import ClaudeDecisionOracle
from warmline.ai.oracle import OracleContext, parse_decision
from warmline.ai.scripted_oracle import ScriptedDecisionOracle
from warmline.core.config import Config
from warmline.core.exceptions import OracleUnavailableError


class TestParseDecision:
    """Raw response -> OracleDecision."""

    def test_full_decision(self):
        decision = parse_decision(
            {
                "should_message": True,
                "reasoning": "new bounty",
                "threads_to_address": [
                    {
                        "item_type": "connector_opportunity",
                        "item_id": 7,
                        "priority": 1,
                        "guidance": "lead with the bounty",
                    }
                ],
            }
        )
        assert decision.should_message is True
        assert decision.reasoning == "new bounty"
        thread = decision.threads[0]
        assert (thread.item_type, thread.item_id, thread.priority) == (
            "connector_opportunity",
            "7",
            1,
        )
        assert thread.guidance == "lead with the bounty"

    def test_field_aliases(self):
        """``id`` and ``message_guidance`` are accepted."""
        decision = parse_decision(
            {
                "should_message": True,
                "threads_to_address": [{"type": "goal", "id": "g-1", "message_guidance": "ask"}],
            }
        )
        assert decision.threads[0].item_id == "g-1"
        assert decision.threads[0].guidance == "ask"

    def test_incomplete_threads_skipped(self):
        decision = parse_decision(
            {
                "should_message": True,
                "threads_to_address": [{"item_type": "goal"}, "junk", {"item_id": 3}],
            }
        )
        assert decision.threads == []

    def test_extend_days(self):
        assert parse_decision({"should_message": False, "extend_days": "14"}).extend_days == 14

    def test_non_positive_extend_days_ignored(self):
        """Zero or negative waits fall back to the default later."""
        assert parse_decision({"should_message": False, "extend_days": 0}).extend_days is None

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            {"reasoning": "no flag"},
            {"should_message": "yes"},
            {"should_message": False, "extend_days": "soon"},
        ],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(OracleUnavailableError):
            parse_decision(payload)


class TestOracleContext:
    def test_to_dict(self):
        context = OracleContext(user_id="u-1", profile_facts={"name": "Ada"})
        data = context.to_dict()
        assert data["user_id"] == "u-1"
        assert data["ranked_items"] == []
        assert data["profile_facts"] == {"name": "Ada"}


class TestBuildOracle:
    """Oracle selection from configuration."""

    def test_scripted(self, tmp_path):
        config = Config(db_path=tmp_path / "w.db", log_path=tmp_path, oracle="scripted")
        assert isinstance(build_oracle(config), ScriptedDecisionOracle)

    def test_claude(self, tmp_path):
        config = Config(
            db_path=tmp_path / "w.db",
            log_path=tmp_path,
            oracle="claude",
            claude_model="claude-haiku-test",
        )
        oracle = build_oracle(config)
        assert isinstance(oracle, ClaudeDecisionOracle)
        assert oracle.model == "claude-haiku-test"

    def test_default_from_environment(self):
        """The test environment selects the scripted oracle."""
        assert isinstance(build_oracle(), ScriptedDecisionOracle)
