"""Shared Claude API client mixin.

Lazy Anthropic client creation and usage tracking for any class that
talks to Claude.
"""

from typing import Any, Optional

import anthropic

from warmline.core.config import Config, get_config
from warmline.core.exceptions import OracleUnavailableError
from warmline.core.logging import get_logger

logger = get_logger(__name__)


class ClaudeClientMixin:
    """Mixin providing lazy Anthropic client initialization.

    Classes using this mixin must NOT define their own ``_client`` attribute
    before calling ``super().__init__()`` (or should set ``self._client = None``
    in their own ``__init__``).
    """

    _client: Optional[Any] = None

    def _get_claude_config(self) -> Config:
        """Return the app config (override if config is stored differently)."""
        return get_config()

    def is_available(self) -> bool:
        """Check if the Claude API key is configured."""
        return bool(self._get_claude_config().claude_api_key)

    def _get_client(self) -> Any:
        """Get or create the Anthropic client (lazy singleton).

        Raises:
            OracleUnavailableError: If CLAUDE_API_KEY is not configured
        """
        if self._client is None:
            config = self._get_claude_config()
            if not config.claude_api_key:
                raise OracleUnavailableError("CLAUDE_API_KEY not configured")
            self._client = anthropic.Anthropic(
                api_key=config.claude_api_key,
                timeout=config.oracle_timeout_seconds,
                max_retries=1,
            )
        return self._client

    def _track_usage(self, caller: str, model: str, input_tokens: int, output_tokens: int) -> None:
        """Record API usage to the cost tracker.

        Args:
            caller: Component name (e.g. "decision_oracle")
            model: Claude model used
            input_tokens: Input tokens consumed
            output_tokens: Output tokens consumed
        """
        try:
            from warmline.utils.cost_tracking import get_cost_tracker

            get_cost_tracker().record_call(caller, model, input_tokens, output_tokens)
        except OSError:
            # Cost tracking should never break the main flow
            logger.debug("Cost tracking failed (non-fatal)", exc_info=True)
