"""AI package - Decision Oracle implementations.

Modules:
    - oracle: Oracle contract (context, decision, parsing)
    - claude_client: Lazy Anthropic client mixin
    - claude_oracle: Production oracle backed by Claude
    - scripted_oracle: Deterministic oracle for tests and dry runs
"""

from typing import Optional

from warmline.ai.oracle import DecisionOracle, OracleContext, OracleDecision, ThreadSelection
from warmline.core.config import Config, get_config


def build_oracle(config: Optional[Config] = None) -> DecisionOracle:
    """Create the oracle selected by WARMLINE_ORACLE."""
    config = config or get_config()
    if config.oracle == "scripted":
        from warmline.ai.scripted_oracle import ScriptedDecisionOracle

        return ScriptedDecisionOracle()

    from warmline.ai.claude_oracle import ClaudeDecisionOracle

    return ClaudeDecisionOracle(model=config.claude_model)


__all__ = [
    "DecisionOracle",
    "OracleContext",
    "OracleDecision",
    "ThreadSelection",
    "build_oracle",
]
