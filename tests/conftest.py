"""
Shared test fixtures for the Worktime test suite.

Async throughout (aiosqlite + AsyncSession).  Engines are exercised
directly with a pinned clock; the HTTP layer is exercised through an httpx
AsyncClient with real JWTs.
"""

import os
import sys
from dataclasses import dataclass
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from worktime.api.v1.deps import get_clock, get_db
from worktime.api.v1.endpoints.auth import limiter
from worktime.core.security import create_access_token
from worktime.db.base import Base
from worktime.main import app
from worktime.models.user import User
from worktime.services.identity import Principal

# 2024-10-01T09:00:00Z
T0 = 1_727_773_200_000

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before usage and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


app.dependency_overrides[get_db] = _override_get_db


# ── Clock ───────────────────────────────────────────────────────────
class FixedClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


# ── Sessions / clients ──────────────────────────────────────────────
@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def fresh_session():
    """Factory for extra sessions, used to read back what the API committed."""
    return TestingSessionLocal


@pytest.fixture
async def async_client(clock: FixedClock) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app with the pinned clock."""
    app.dependency_overrides[get_clock] = lambda: clock
    limiter.reset()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_clock, None)


# ── Users ───────────────────────────────────────────────────────────
@dataclass
class Staff:
    admin: Principal
    manager: Principal
    alice: Principal
    bob: Principal


@pytest.fixture
async def staff(db_session: AsyncSession) -> Staff:
    """One admin, one manager and two employees."""
    rows = {
        "admin": User(email="admin@test.com", hashed_password="pw", role="admin", is_active=True),
        "manager": User(email="manager@test.com", hashed_password="pw", role="manager", is_active=True),
        "alice": User(email="alice@test.com", hashed_password="pw", role="employee", is_active=True),
        "bob": User(email="bob@test.com", hashed_password="pw", role="employee", is_active=True),
    }
    db_session.add_all(rows.values())
    await db_session.commit()
    return Staff(**{key: Principal(id=user.id, role=user.role) for key, user in rows.items()})


@pytest.fixture
def auth_headers():
    """Build an Authorization header carrying a real access token."""

    def _headers(principal: Principal) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(principal.id)}"}

    return _headers
