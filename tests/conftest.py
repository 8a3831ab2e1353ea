"""Shared pytest fixtures for Warmline tests.

Fixtures:
    - isolated_config: Environment pinned to temp paths and the scripted oracle
    - clock: ManualClock starting 2026-03-02 09:00 UTC
    - memory_db: Fresh in-memory database on the manual clock
    - temp_db: File-backed database (needed when several connections share it)
    - user: Member "u-1" in memory_db
    - make_connector / make_request / make_offer: Opportunity factories
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest

from warmline.core.clock import ManualClock
from warmline.core.config import reset_config
from warmline.core.logging import reset_logging
from warmline.db.database import Database
from warmline.db.models import (
    ConnectionRequest,
    ConnectionStrength,
    ConnectorOpportunity,
    IntroductionOffer,
    IntroRole,
    User,
)
from warmline.utils.cost_tracking import reset_tracker

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep every test away from the real home directory, .env and API."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WARMLINE_DB_PATH", str(tmp_path / "warmline.db"))
    monkeypatch.setenv("WARMLINE_LOG_PATH", str(tmp_path / "logs"))
    monkeypatch.setenv("WARMLINE_ORACLE", "scripted")
    monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
    monkeypatch.delenv("WARMLINE_DRY_RUN", raising=False)
    monkeypatch.delenv("WARMLINE_RESPONSE_WINDOW_DAYS", raising=False)
    reset_config()
    reset_tracker()
    yield
    reset_config()
    reset_tracker()
    reset_logging()


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock so pacing tests can move time."""
    return ManualClock(START)


@pytest.fixture
def memory_db(clock: ManualClock) -> Generator[Database, None, None]:
    """Create an in-memory database for fast tests.

    Yields:
        Database using :memory:, no cleanup needed
    """
    db = Database(":memory:", clock=clock)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def temp_db(tmp_path: Path, clock: ManualClock) -> Generator[Database, None, None]:
    """Create a file-backed database.

    Yields:
        Database connected to a temp file, closed after the test
    """
    db = Database(str(tmp_path / "shared.db"), clock=clock)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def user(memory_db: Database) -> User:
    """Member u-1 with a small profile."""
    member = User(id="u-1", display_name="Ada", profile={"industry": "fintech"})
    memory_db.create_user(member)
    return member


@pytest.fixture
def make_connector(clock: ManualClock) -> Callable[..., ConnectorOpportunity]:
    """Factory for connector opportunities (not persisted)."""

    def _make(
        owner: str = "u-1",
        prospect_id: str = "p-1",
        bounty_credits: int = 50,
        connection_strength: ConnectionStrength = ConnectionStrength.FIRST,
        age_days: float = 1,
        descriptor: str = "Head of Growth at Acme",
    ) -> ConnectorOpportunity:
        return ConnectorOpportunity(
            owner_user_id=owner,
            counterpart_descriptor=descriptor,
            prospect_id=prospect_id,
            bounty_credits=bounty_credits,
            connection_strength=connection_strength,
            created_at=clock.now() - timedelta(days=age_days),
        )

    return _make


@pytest.fixture
def make_request(clock: ManualClock) -> Callable[..., ConnectionRequest]:
    """Factory for connection requests (not persisted)."""

    def _make(
        owner: str = "u-1",
        vouch_count: int = 3,
        credits_spent: int = 0,
        age_days: float = 10,
    ) -> ConnectionRequest:
        return ConnectionRequest(
            owner_user_id=owner,
            counterpart_descriptor="Founder looking for a CFO intro",
            vouch_count=vouch_count,
            credits_spent=credits_spent,
            created_at=clock.now() - timedelta(days=age_days),
        )

    return _make


@pytest.fixture
def make_offer(clock: ManualClock) -> Callable[..., IntroductionOffer]:
    """Factory for introduction offers (not persisted)."""

    def _make(
        owner: str = "u-1",
        role: IntroRole = IntroRole.CONNECTOR,
        bounty_credits: int = 0,
        age_days: float = 5,
    ) -> IntroductionOffer:
        return IntroductionOffer(
            owner_user_id=owner,
            counterpart_descriptor="Two founders in climate",
            role=role,
            bounty_credits=bounty_credits,
            created_at=clock.now() - timedelta(days=age_days),
        )

    return _make


# Markers for different test types
def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "database: marks tests requiring database")
