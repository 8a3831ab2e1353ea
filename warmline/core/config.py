"""Configuration management for Warmline.

Loads configuration from environment variables and .env file.
Provides validation and sensible defaults.

Usage:
    from warmline.core.config import get_config, validate_config

    config = get_config()
    issues = validate_config(config)
    if issues:
        for issue in issues:
            print(f"Config issue: {issue}")
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from warmline.core.exceptions import ConfigurationError

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-20250514"


@dataclass
class Config:
    """Application configuration.

    Attributes:
        db_path: Path to SQLite database file
        log_path: Directory for log files
        claude_api_key: Anthropic Claude API key (production oracle)
        claude_model: Claude model used by the production oracle
        oracle: Which Decision Oracle to use ("claude" or "scripted")
        oracle_timeout_seconds: Oracle call budget before failing safe
        ranking_timeout_seconds: Ranking recompute budget before failing safe
        min_interval_days: Minimum days between two sent contacts
        strike_window_days: Trailing window scanned for unanswered sends
        max_unanswered: Unanswered streak that pauses a user
        response_window_days: How long after a send a reply still counts
            as an answer (None = unconstrained)
        default_extend_days: Wait when the oracle declines without a value
        retry_delay_days: Wait after an oracle or ranking failure
        ranking_limit: Size of the per-user priority list
        recent_message_window: Messages included in the oracle context
        worker_threads: Parallel decision units per sweep
        sweep_interval_seconds: How often the orchestrator sweeps due tasks
        debug: Enable debug mode
        dry_run: Evaluate decisions but record nothing as sent
    """

    db_path: Path = field(default_factory=lambda: Path.home() / ".warmline" / "warmline.db")
    log_path: Path = field(default_factory=lambda: Path.home() / ".warmline" / "logs")

    # Decision Oracle
    claude_api_key: Optional[str] = None
    claude_model: str = DEFAULT_CLAUDE_MODEL
    oracle: str = "claude"
    oracle_timeout_seconds: float = 30.0
    ranking_timeout_seconds: float = 10.0

    # Pacing
    min_interval_days: int = 7
    strike_window_days: int = 90
    max_unanswered: int = 3
    response_window_days: Optional[int] = None
    default_extend_days: int = 30
    retry_delay_days: int = 1

    # Ranking and context
    ranking_limit: int = 10
    recent_message_window: int = 20

    # Background execution
    worker_threads: int = 4
    sweep_interval_seconds: int = 300

    # Feature flags
    debug: bool = False
    dry_run: bool = False


def load_env_file(path: Path) -> dict[str, str]:
    """Parse .env file.

    Handles:
        - KEY=VALUE format
        - Comments (lines starting with #)
        - Blank lines
        - Quoted values

    Args:
        path: Path to .env file

    Returns:
        Dictionary of environment variables
    """
    env_vars: dict[str, str] = {}

    if not path.exists():
        return env_vars

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()

                if value and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                if key:
                    env_vars[key] = value

    return env_vars


def _get_path(key: str, default: Path, env_vars: dict[str, str]) -> Path:
    """Get path from environment, expanding ~ and resolving."""
    value = os.environ.get(key) or env_vars.get(key)
    if value:
        return Path(value).expanduser().resolve()
    return default


def _get_str(key: str, env_vars: dict[str, str]) -> Optional[str]:
    """Get string from environment."""
    return os.environ.get(key) or env_vars.get(key) or None


def _get_bool(key: str, default: bool, env_vars: dict[str, str]) -> bool:
    """Get boolean from environment."""
    value = os.environ.get(key) or env_vars.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_int(key: str, default: int, env_vars: dict[str, str]) -> int:
    """Get integer from environment.

    Raises:
        ConfigurationError: If the value is not an integer
    """
    value = os.environ.get(key) or env_vars.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from e


def _get_optional_int(key: str, env_vars: dict[str, str]) -> Optional[int]:
    """Get optional integer from environment. Empty or 'none' means unset."""
    value = os.environ.get(key) or env_vars.get(key)
    if value is None or value.strip().lower() in ("", "none"):
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from e


def _get_float(key: str, default: float, env_vars: dict[str, str]) -> float:
    """Get float from environment."""
    value = os.environ.get(key) or env_vars.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from e


# Default paths (defined once, used by both Config and load_config)
DEFAULT_DB_PATH = Path.home() / ".warmline" / "warmline.db"
DEFAULT_LOG_PATH = Path.home() / ".warmline" / "logs"


def load_config(env_file: Optional[Path] = None) -> Config:
    """Load configuration from environment and .env file.

    Priority:
        1. Environment variables (highest)
        2. .env file
        3. Default values (lowest)

    Args:
        env_file: Path to .env file. Defaults to .env in current directory.

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If a numeric setting cannot be parsed
    """
    if env_file is None:
        env_file = Path.cwd() / ".env"

    env_vars = load_env_file(env_file)

    return Config(
        db_path=_get_path("WARMLINE_DB_PATH", DEFAULT_DB_PATH, env_vars),
        log_path=_get_path("WARMLINE_LOG_PATH", DEFAULT_LOG_PATH, env_vars),
        claude_api_key=_get_str("CLAUDE_API_KEY", env_vars),
        claude_model=_get_str("WARMLINE_CLAUDE_MODEL", env_vars) or DEFAULT_CLAUDE_MODEL,
        oracle=(_get_str("WARMLINE_ORACLE", env_vars) or "claude").lower(),
        oracle_timeout_seconds=_get_float("WARMLINE_ORACLE_TIMEOUT", 30.0, env_vars),
        ranking_timeout_seconds=_get_float("WARMLINE_RANKING_TIMEOUT", 10.0, env_vars),
        min_interval_days=_get_int("WARMLINE_MIN_INTERVAL_DAYS", 7, env_vars),
        strike_window_days=_get_int("WARMLINE_STRIKE_WINDOW_DAYS", 90, env_vars),
        max_unanswered=_get_int("WARMLINE_MAX_UNANSWERED", 3, env_vars),
        response_window_days=_get_optional_int("WARMLINE_RESPONSE_WINDOW_DAYS", env_vars),
        default_extend_days=_get_int("WARMLINE_DEFAULT_EXTEND_DAYS", 30, env_vars),
        retry_delay_days=_get_int("WARMLINE_RETRY_DAYS", 1, env_vars),
        ranking_limit=_get_int("WARMLINE_RANKING_LIMIT", 10, env_vars),
        recent_message_window=_get_int("WARMLINE_MESSAGE_WINDOW", 20, env_vars),
        worker_threads=_get_int("WARMLINE_WORKERS", 4, env_vars),
        sweep_interval_seconds=_get_int("WARMLINE_SWEEP_SECONDS", 300, env_vars),
        debug=_get_bool("WARMLINE_DEBUG", False, env_vars),
        dry_run=_get_bool("WARMLINE_DRY_RUN", False, env_vars),
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration.

    Checks:
        - Required paths exist or can be created
        - Paths are writable
        - Pacing values are positive
        - Oracle selection is complete

    Args:
        config: Configuration to validate

    Returns:
        List of issues (empty if valid)
    """
    issues: list[str] = []

    db_dir = config.db_path.parent
    try:
        db_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(db_dir, os.W_OK):
            issues.append(f"Database directory not writable: {db_dir}")
    except OSError as e:
        issues.append(f"Cannot create database directory {db_dir}: {e}")

    try:
        config.log_path.mkdir(parents=True, exist_ok=True)
        if not os.access(config.log_path, os.W_OK):
            issues.append(f"Log directory not writable: {config.log_path}")
    except OSError as e:
        issues.append(f"Cannot create log directory {config.log_path}: {e}")

    positive = {
        "WARMLINE_MIN_INTERVAL_DAYS": config.min_interval_days,
        "WARMLINE_STRIKE_WINDOW_DAYS": config.strike_window_days,
        "WARMLINE_DEFAULT_EXTEND_DAYS": config.default_extend_days,
        "WARMLINE_RETRY_DAYS": config.retry_delay_days,
        "WARMLINE_RANKING_LIMIT": config.ranking_limit,
        "WARMLINE_WORKERS": config.worker_threads,
        "WARMLINE_SWEEP_SECONDS": config.sweep_interval_seconds,
    }
    for key, value in positive.items():
        if value <= 0:
            issues.append(f"{key} must be positive, got {value}")

    if config.max_unanswered < 1:
        issues.append(f"WARMLINE_MAX_UNANSWERED must be at least 1, got {config.max_unanswered}")

    if config.response_window_days is not None and config.response_window_days <= 0:
        issues.append(
            f"WARMLINE_RESPONSE_WINDOW_DAYS must be positive or unset, "
            f"got {config.response_window_days}"
        )

    if config.oracle_timeout_seconds <= 0:
        issues.append("WARMLINE_ORACLE_TIMEOUT must be positive")

    if config.oracle not in ("claude", "scripted"):
        issues.append(f"Unknown WARMLINE_ORACLE {config.oracle!r} (expected claude or scripted)")
    elif config.oracle == "claude" and not config.claude_api_key:
        issues.append(
            "CRITICAL: WARMLINE_ORACLE is claude but CLAUDE_API_KEY is missing. "
            "Every decision will fail safe to no message."
        )

    return issues


# Singleton config
_config: Optional[Config] = None


def get_config() -> Config:
    """Return cached configuration singleton.

    Loads configuration on first call, returns cached version thereafter.

    Returns:
        Application configuration
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset cached configuration.

    Used primarily for testing.
    """
    global _config
    _config = None
