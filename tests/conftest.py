"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of rizzculator.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from rizzculator.database.models import Base  # noqa: E402
from rizzculator.engine.broker import InMemoryBroker  # noqa: E402
from rizzculator.services import user_service  # noqa: E402


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Rizzculator tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest.fixture
def make_user(db_engine: Engine):
    """Factory creating a profile row: ``make_user("alice", country="US")``."""

    def _make(user_id: str, username: str | None = None, **kwargs):
        return user_service.create_user(db_engine, user_id, username or user_id, **kwargs)

    return _make



@pytest.fixture
def file_engine(tmp_path):
    """SQLite engine on a real file, one connection per thread.

    Concurrency tests need separate connections so SQLite's own locking
    decides who writes first, which the shared in-memory pool hides.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'rizz.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()
