"""Pytest configuration and fixtures for backend tests.

Tests run against an in-memory SQLite database (aiosqlite) and an in-memory
key-value store with a controllable clock, so no PostgreSQL or Redis server
is needed.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ["SECRET_KEY"] = "test-secret-key-" + "0" * 32
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
# High limits so route tests never hit 429; limiter tests build their own
os.environ["AUTH_RATE_LIMIT"] = "10000"
os.environ["API_RATE_LIMIT"] = "10000"
os.environ["ADMIN_SIGNUP_SECRET"] = "admin-signup-code"
os.environ["MANAGER_SIGNUP_SECRET"] = "manager-signup-code"
os.environ["STAFF_SIGNUP_SECRET"] = "staff-signup-code"

from wellmesh.core.kv_store import (  # noqa: E402
    InMemoryKeyValueStore,
    KeyValueStore,
    StoreUnavailableError,
)

TEST_PASSWORD = "correct-horse-battery"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(KeyValueStore):
    """Store whose every operation fails as if the server were unreachable."""

    def __init__(self) -> None:
        self.calls = 0

    def _fail(self, operation: str):
        self.calls += 1
        raise StoreUnavailableError(f"{operation} failed: connection refused")

    async def get(self, key):
        self._fail("GET")

    async def set(self, key, value, ttl_seconds=None):
        self._fail("SET")

    async def increment(self, key, ttl_seconds):
        self._fail("INCR")

    async def ttl(self, key):
        self._fail("TTL")

    async def delete(self, *keys):
        self._fail("DEL")

    async def delete_by_prefix(self, prefix):
        self._fail("SCAN")

    async def ping(self):
        return False


# --- Key-value store fixtures ---


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store(clock) -> InMemoryKeyValueStore:
    """Fresh in-memory store driven by the fake clock."""
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


# --- Database fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create an in-memory SQLite engine with all tables."""
    from wellmesh.core.database import Base
    from wellmesh.models import RefreshToken, User  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def async_client(
    db_session: AsyncSession, kv_store: InMemoryKeyValueStore
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database and key-value store overrides."""
    from wellmesh.core.database import get_db
    from wellmesh.core.kv_store import get_kv_store
    from wellmesh.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_kv_store] = lambda: kv_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# --- Test factories ---


@pytest.fixture
def user_factory(db_session):
    """Factory for creating test User objects."""
    from wellmesh.models.user import Role, User
    from wellmesh.services.auth import hash_password

    password_hash = hash_password(TEST_PASSWORD)
    counter = {"n": 0}

    async def _create_user(
        role: Role = Role.STAFF,
        username: str | None = None,
        email: str | None = None,
        is_verified: bool = True,
        **kwargs,
    ) -> User:
        counter["n"] += 1
        username = username or f"{role.value}{counter['n']}"
        user = User(
            username=username,
            email=email or f"{username}@example.com",
            password_hash=password_hash,
            role=role,
            is_verified=is_verified,
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest_asyncio.fixture
async def admin_user(user_factory):
    from wellmesh.models.user import Role

    return await user_factory(role=Role.ADMIN, username="admin")


@pytest_asyncio.fixture
async def manager_user(user_factory):
    from wellmesh.models.user import Role

    return await user_factory(role=Role.MANAGER, username="manager")


@pytest_asyncio.fixture
async def staff_user(user_factory):
    from wellmesh.models.user import Role

    return await user_factory(role=Role.STAFF, username="staff")


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def headers_for(user) -> dict[str, str]:
    """Authorization headers with a fresh access token for ``user``."""
    from wellmesh.services.auth import create_access_token

    return bearer(create_access_token(user.id, user.role))
