"""Production Decision Oracle backed by Claude.

Renders the context bundle into a prompt (Jinja2 template under
``prompts/``), asks Claude for a JSON decision and parses it.

Failures are mapped onto the oracle errors the orchestrator fails safe on:
    - API timeout -> OracleTimeoutError
    - Any other API failure, missing key or unparseable reply
      -> OracleUnavailableError

Usage:
    from warmline.ai.claude_oracle import ClaudeDecisionOracle

    oracle = ClaudeDecisionOracle()
    decision = oracle.decide(context)
"""

import json
from pathlib import Path
from typing import Any, Optional

import anthropic
import jinja2

from warmline.ai.claude_client import ClaudeClientMixin
from warmline.ai.oracle import DecisionOracle, OracleContext, OracleDecision, parse_decision
from warmline.core.exceptions import OracleTimeoutError, OracleUnavailableError
from warmline.core.logging import get_logger

logger = get_logger(__name__)

PROMPT_DIR = Path(__file__).parent / "prompts"
PROMPT_TEMPLATE = "decision.md.j2"

_MAX_TOKENS = 1024

# Jinja2 environment (created once, reused)
_env: Optional[jinja2.Environment] = None


def _get_env() -> jinja2.Environment:
    """Get or create the Jinja2 environment."""
    global _env
    if _env is None:
        _env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(PROMPT_DIR)),
            autoescape=False,
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
        )
    return _env


def render_prompt(context: OracleContext) -> str:
    """Render the decision prompt for a context bundle."""
    template = _get_env().get_template(PROMPT_TEMPLATE)
    return template.render(**context.to_dict())


def extract_json(text: str) -> Any:
    """Pull the JSON object out of a model reply.

    Tolerates code fences and leading or trailing prose.

    Raises:
        OracleUnavailableError: If no JSON object can be decoded
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise OracleUnavailableError("Oracle reply contained no JSON object")
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise OracleUnavailableError(f"Oracle reply was not valid JSON: {e}") from e


class ClaudeDecisionOracle(ClaudeClientMixin, DecisionOracle):
    """Decision Oracle that asks Claude."""

    name = "decision_oracle"

    def __init__(self, model: Optional[str] = None):
        self._client = None
        self.model = model or self._get_claude_config().claude_model

    def decide(self, context: OracleContext) -> OracleDecision:
        """Ask Claude for a decision.

        Raises:
            OracleTimeoutError: If the API call timed out
            OracleUnavailableError: If the API failed or the reply was unusable
        """
        client = self._get_client()
        prompt = render_prompt(context)

        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=_MAX_TOKENS,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise OracleTimeoutError(f"Claude timed out: {e}") from e
        except anthropic.APIError as e:
            raise OracleUnavailableError(f"Claude API error: {e}") from e

        self._track_usage(
            self.name,
            self.model,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )

        if not response.content:
            raise OracleUnavailableError("Claude returned an empty reply")
        decision = parse_decision(extract_json(response.content[0].text))

        logger.info(
            "Oracle decision received",
            extra={
                "context": {
                    "user_id": context.user_id,
                    "should_message": decision.should_message,
                    "threads": len(decision.threads),
                }
            },
        )
        return decision
