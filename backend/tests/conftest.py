"""
Shared pytest fixtures for the activity ledger tests.

Provides:
  - a per-test SQLite database file with the schema created
  - a session factory, a read session and an EventRecorder bound to it
  - the FastAPI app wired to that database, and an async HTTP client
  - signed access tokens for an admin and a non-admin caller
"""
from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from activity_ledger.config.settings import Settings
from activity_ledger.core.security import create_access_token
from activity_ledger.db.base import Base
from activity_ledger.db.session import get_sessionmaker
from activity_ledger.main import create_app
from activity_ledger.services.activity.context import RequestContext
from activity_ledger.services.activity.recorder import EventRecorder


# ─── Settings override ────────────────────────────────────────────────────────

TEST_SETTINGS = Settings(
    _env_file=None,
    database_url="sqlite+aiosqlite:///:memory:",
    jwt_secret_key="test-secret-key-not-for-production-at-all",
    environment="testing",
    run_migrations_on_startup=False,
    log_json=False,
    rate_limit_default="10000/minute",
    activity_stream_poll_seconds=0.05,
)

ADMIN_ID = "admin-1"
EMPLOYEE_ID = "employee-7"


# ─── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database file per test, so sessions really are separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'activity.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def recorder(session_factory) -> EventRecorder:
    return EventRecorder(session_factory)


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(
        request_id="req-test",
        actor_id=ADMIN_ID,
        actor_role="admin",
        ip="127.0.0.1",
        user_agent="pytest",
    )


# ─── App & HTTP client ────────────────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return TEST_SETTINGS


@pytest.fixture
def app(session_factory):
    """FastAPI test app with the session factory pointed at the test database."""
    app_ = create_app(settings=TEST_SETTINGS)
    app_.dependency_overrides[get_sessionmaker] = lambda: session_factory
    return app_


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated async HTTP client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c


@pytest.fixture
def admin_token() -> str:
    return create_access_token(ADMIN_ID, "admin", settings=TEST_SETTINGS)


@pytest.fixture
def employee_token() -> str:
    return create_access_token(EMPLOYEE_ID, "employee", settings=TEST_SETTINGS)


@pytest.fixture
def admin_headers(admin_token) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_token}"}
