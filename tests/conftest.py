"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of huddle.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import BigInteger, Engine, create_engine, event  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from huddle.database.models import Base, User  # noqa: E402
from huddle.services.notifications import RecordingNotificationSink  # noqa: E402


# ---------------------------------------------------------------------------
# Map BigInteger → INTEGER so autoincrement works on SQLite.
# ---------------------------------------------------------------------------
@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Huddle tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` in ``run_db`` and by TestClient's
    worker threads).  pysqlite's implicit transaction handling is switched
    off so SAVEPOINTs nest inside a real ``BEGIN``, and foreign keys are
    enforced so ``ON DELETE`` rules behave as on PostgreSQL.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine with a real connection pool.

    For tests that run several transactions at once on worker threads
    (``recompute_async``, the recompute queue): every thread gets its own
    connection and writers queue on ``BEGIN IMMEDIATE``.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'huddle.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def make_user(db_engine: Engine):
    """Factory fixture: ``make_user("ana", unlimited=False) -> user id``."""

    def _make(nickname: str = "member", *, unlimited: bool = False) -> int:
        with Session(db_engine) as session:
            user = User(nickname=nickname, has_unlimited_votes=unlimited)
            session.add(user)
            session.commit()
            return user.id

    return _make


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


def make_token(user_id: int | str) -> str:
    """Create a user JWT the way the identity provider would."""
    import jwt

    from huddle.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": str(user_id)}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def auth_headers():
    """Factory fixture: ``auth_headers(user_id) -> {"Authorization": ...}``."""

    def _headers(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest.fixture
def recompute_queue(db_engine: Engine):
    from huddle.services.recompute_queue import ScoreRecomputeQueue

    return ScoreRecomputeQueue(db_engine, interval=3600)


@pytest.fixture
def client(db_engine: Engine, recompute_queue):
    """FastAPI TestClient wired to the SQLite engine, raise_server_exceptions=False."""
    from fastapi.testclient import TestClient

    from huddle.api.deps import get_config, get_engine, get_queue
    from huddle.api.main import app
    from huddle.config import HuddleConfig

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: HuddleConfig(community_name="Test")
    app.dependency_overrides[get_queue] = lambda: recompute_queue
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
