"""Core package - Configuration, logging, exceptions.

This package provides foundational infrastructure used by all other layers.

Modules:
    - config: Environment and configuration management
    - logging: Structured JSON logging
    - exceptions: Custom exception hierarchy
    - clock: Injectable wall clock
    - tasks: Thread and task management
"""

from warmline.core.exceptions import (
    ConfigurationError,
    DatabaseError,
    IntegrityWarning,
    NotFoundError,
    OracleError,
    OracleTimeoutError,
    OracleUnavailableError,
    PipelineError,
    RankingUnavailableError,
    ValidationError,
    WarmlineError,
)

__all__ = [
    "WarmlineError",
    "ConfigurationError",
    "ValidationError",
    "DatabaseError",
    "NotFoundError",
    "PipelineError",
    "RankingUnavailableError",
    "OracleError",
    "OracleTimeoutError",
    "OracleUnavailableError",
    "IntegrityWarning",
]
