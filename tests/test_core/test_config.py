"""Tests for configuration management."""

from pathlib import Path

import pytest

from warmline.core.config import (
    DEFAULT_CLAUDE_MODEL,
    Config,
    get_config,
    load_config,
    load_env_file,
    reset_config,
    validate_config,
)
from warmline.core.exceptions import ConfigurationError


def _config(tmp_path: Path, **overrides) -> Config:
    base = dict(db_path=tmp_path / "test.db", log_path=tmp_path / "logs", oracle="scripted")
    base.update(overrides)
    return Config(**base)


class TestConfig:
    """Test Config dataclass."""

    def test_config_default_values(self):
        """Config has the documented pacing defaults."""
        config = Config()
        assert config.min_interval_days == 7
        assert config.strike_window_days == 90
        assert config.max_unanswered == 3
        assert config.response_window_days is None
        assert config.default_extend_days == 30
        assert config.retry_delay_days == 1
        assert config.claude_model == DEFAULT_CLAUDE_MODEL
        assert config.debug is False

    def test_config_with_custom_paths(self, tmp_path: Path):
        """Config accepts custom paths."""
        config = Config(db_path=tmp_path / "data.db", log_path=tmp_path / "logs")
        assert "data.db" in str(config.db_path)


class TestLoadEnvFile:
    """Test .env parsing."""

    def test_missing_file_is_empty(self, tmp_path: Path):
        """A missing .env file yields no values."""
        assert load_env_file(tmp_path / "nope.env") == {}

    def test_parses_quotes_and_comments(self, tmp_path: Path):
        """Comments are skipped and surrounding quotes stripped."""
        env_file = tmp_path / ".env"
        env_file.write_text('# comment\nWARMLINE_DEBUG="true"\nCLAUDE_API_KEY=\'abc\'\n')
        values = load_env_file(env_file)
        assert values["WARMLINE_DEBUG"] == "true"
        assert values["CLAUDE_API_KEY"] == "abc"


class TestLoadConfig:
    """Test config loading."""

    def test_load_from_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Values in .env are used when the environment is silent."""
        monkeypatch.delenv("WARMLINE_ORACLE", raising=False)
        env_file = tmp_path / "custom.env"
        env_file.write_text("WARMLINE_DEBUG=true\nWARMLINE_MIN_INTERVAL_DAYS=5\n")
        config = load_config(env_file)
        assert config.debug is True
        assert config.min_interval_days == 5
        assert config.oracle == "claude"

    def test_environment_beats_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Environment variables take priority over .env."""
        env_file = tmp_path / "custom.env"
        env_file.write_text("WARMLINE_MAX_UNANSWERED=5\n")
        monkeypatch.setenv("WARMLINE_MAX_UNANSWERED", "2")
        assert load_config(env_file).max_unanswered == 2

    def test_response_window_optional(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Response window stays None unless set."""
        assert load_config(tmp_path / "none.env").response_window_days is None
        monkeypatch.setenv("WARMLINE_RESPONSE_WINDOW_DAYS", "14")
        assert load_config(tmp_path / "none.env").response_window_days == 14

    def test_bad_integer_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Non-numeric pacing values are configuration errors."""
        monkeypatch.setenv("WARMLINE_MIN_INTERVAL_DAYS", "a week")
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "none.env")

    def test_get_config_is_cached(self):
        """get_config returns the same object until reset."""
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first


class TestValidateConfig:
    """Test config validation."""

    def test_valid_config_has_no_issues(self, tmp_path: Path):
        """Scripted oracle with defaults validates cleanly."""
        assert validate_config(_config(tmp_path)) == []

    def test_missing_api_key_is_critical(self, tmp_path: Path):
        """Claude oracle without a key produces a CRITICAL issue."""
        issues = validate_config(_config(tmp_path, oracle="claude"))
        critical = [i for i in issues if i.startswith("CRITICAL:")]
        assert len(critical) == 1
        assert "CLAUDE_API_KEY" in critical[0]

    def test_claude_with_key_is_fine(self, tmp_path: Path):
        """Claude oracle with a key has no oracle issue."""
        assert validate_config(_config(tmp_path, oracle="claude", claude_api_key="k")) == []

    def test_unknown_oracle_flagged(self, tmp_path: Path):
        """Unknown oracle names are reported."""
        issues = validate_config(_config(tmp_path, oracle="magic"))
        assert any("WARMLINE_ORACLE" in i for i in issues)

    def test_non_positive_values_flagged(self, tmp_path: Path):
        """Zero interval and zero strike cap are both reported."""
        issues = validate_config(_config(tmp_path, min_interval_days=0, max_unanswered=0))
        assert any("WARMLINE_MIN_INTERVAL_DAYS" in i for i in issues)
        assert any("WARMLINE_MAX_UNANSWERED" in i for i in issues)

    def test_bad_response_window_flagged(self, tmp_path: Path):
        """A non-positive response window is reported."""
        issues = validate_config(_config(tmp_path, response_window_days=0))
        assert any("WARMLINE_RESPONSE_WINDOW_DAYS" in i for i in issues)
