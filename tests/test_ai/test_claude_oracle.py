"""Tests for the Claude-backed oracle.

Tests prompt rendering, reply parsing and error mapping without calling
the real API.
"""

from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from warmline.ai.claude_oracle import ClaudeDecisionOracle, extract_json, render_prompt
from warmline.ai.oracle import OracleContext
from warmline.core.config import Config
from warmline.core.exceptions import OracleTimeoutError, OracleUnavailableError
from warmline.utils.cost_tracking import get_cost_tracker


@pytest.fixture
def context() -> OracleContext:
    return OracleContext(
        user_id="u-1",
        ranked_items=[
            {
                "rank": 1,
                "item_type": "connector_opportunity",
                "item_id": "7",
                "value_score": 100,
                "status": "open",
                "description": "Head of Growth at Acme",
            }
        ],
        outstanding_requests=[
            {"item_type": "outstanding_request", "item_id": "3", "description": "Find a lawyer"}
        ],
        recent_messages=[
            {"direction": "inbound", "content": "any news?", "created_at": "2026-03-01"}
        ],
        profile_facts={"name": "Ada", "industry": "fintech"},
        reengagement_metadata={"trigger_id": "task:1", "unanswered_count": 0},
    )


@pytest.fixture
def oracle(tmp_path, monkeypatch) -> ClaudeDecisionOracle:
    """Oracle with a fake key and a mocked Anthropic client."""
    config = Config(
        db_path=tmp_path / "test.db",
        log_path=tmp_path / "logs",
        claude_api_key="sk-ant-fake-key",
        claude_model="claude-sonnet-test",
    )
    monkeypatch.setattr("warmline.ai.claude_client.get_config", lambda: config)
    get_cost_tracker(tmp_path / "usage.jsonl")
    instance = ClaudeDecisionOracle()
    instance._client = MagicMock()
    return instance


def _reply(text: str, input_tokens: int = 1200, output_tokens: int = 80) -> MagicMock:
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage.input_tokens = input_tokens
    response.usage.output_tokens = output_tokens
    return response


_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class TestRenderPrompt:
    """Prompt construction."""

    def test_includes_every_section(self, context):
        prompt = render_prompt(context)
        assert "[connector_opportunity #7] score=100 status=open - Head of Growth at Acme" in prompt
        assert "[outstanding_request #3] Find a lawyer" in prompt
        assert "inbound 2026-03-01: any news?" in prompt
        assert "- industry: fintech" in prompt
        assert "- trigger_id: task:1" in prompt

    def test_empty_context(self):
        prompt = render_prompt(OracleContext(user_id="u-1"))
        assert "(none)" in prompt
        assert "(no messages)" in prompt


class TestExtractJson:
    def test_fenced_reply(self):
        assert extract_json('```json\n{"should_message": false}\n```') == {
            "should_message": False
        }

    def test_prose_around_json(self):
        assert extract_json('Here you go: {"a": 1} hope that helps')["a"] == 1

    def test_no_json(self):
        with pytest.raises(OracleUnavailableError):
            extract_json("I think you should wait.")

    def test_broken_json(self):
        with pytest.raises(OracleUnavailableError):
            extract_json('{"should_message": tru}')


class TestDecide:
    """API call and error mapping."""

    def test_decision_parsed(self, oracle, context):
        oracle._client.messages.create.return_value = _reply(
            '{"should_message": true, "reasoning": "fresh bounty", "threads_to_address": '
            '[{"item_type": "connector_opportunity", "item_id": "7", "priority": 1}]}'
        )
        decision = oracle.decide(context)

        assert decision.should_message is True
        assert decision.threads[0].item_id == "7"
        kwargs = oracle._client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-sonnet-test"
        assert "Head of Growth at Acme" in kwargs["messages"][0]["content"]

    def test_usage_tracked(self, oracle, context):
        oracle._client.messages.create.return_value = _reply('{"should_message": false}')
        oracle.decide(context)
        records = get_cost_tracker().records()
        assert len(records) == 1
        assert records[0].caller == "decision_oracle"
        assert records[0].input_tokens == 1200

    def test_timeout_mapped(self, oracle, context):
        oracle._client.messages.create.side_effect = anthropic.APITimeoutError(request=_REQUEST)
        with pytest.raises(OracleTimeoutError):
            oracle.decide(context)

    def test_api_error_mapped(self, oracle, context):
        oracle._client.messages.create.side_effect = anthropic.APIConnectionError(
            request=_REQUEST
        )
        with pytest.raises(OracleUnavailableError):
            oracle.decide(context)

    def test_unusable_reply(self, oracle, context):
        oracle._client.messages.create.return_value = _reply("Let me think about it.")
        with pytest.raises(OracleUnavailableError):
            oracle.decide(context)

    def test_empty_reply(self, oracle, context):
        response = _reply("")
        response.content = []
        oracle._client.messages.create.return_value = response
        with pytest.raises(OracleUnavailableError):
            oracle.decide(context)


class TestAvailability:
    def test_missing_key(self, tmp_path, monkeypatch, context):
        """Without a key the oracle is unavailable, never a crash."""
        config = Config(db_path=tmp_path / "test.db", log_path=tmp_path / "logs")
        monkeypatch.setattr("warmline.ai.claude_client.get_config", lambda: config)
        oracle = ClaudeDecisionOracle()
        assert oracle.is_available() is False
        with pytest.raises(OracleUnavailableError):
            oracle.decide(context)
