"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from deskpoints.config import DEFAULT_CONFIG
from deskpoints.database.models import Base, Ticket
from deskpoints.engine.locks import KeyedLock

# Wednesday 2026-03-11, 12:00 business time (GMT+2).
FIXED_NOW = datetime(2026, 3, 11, 10, 0, tzinfo=UTC)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all deskpoints tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (the API runs sync handlers on a worker thread).
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
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def config():
    return DEFAULT_CONFIG


@pytest.fixture
def seed_ticket(db_engine: Engine, now: datetime):
    """Factory inserting a helpdesk ticket row; returns its id."""

    def _seed(ticket_id: int, **fields) -> int:
        fields.setdefault("subject", f"Ticket {ticket_id}")
        fields.setdefault("created_at", now - timedelta(hours=1))
        with Session(db_engine) as session:
            session.add(Ticket(id=ticket_id, **fields))
            session.commit()
        return ticket_id

    return _seed


@pytest.fixture
def client(db_engine: Engine):
    """FastAPI TestClient bound to the in-memory database."""
    from fastapi.testclient import TestClient

    from deskpoints.api.deps import get_config, get_engine
    from deskpoints.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: DEFAULT_CONFIG
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
