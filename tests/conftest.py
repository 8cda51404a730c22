"""Shared test fixtures.

Tests run against an in-memory SQLite database (one shared connection per
test) and no Redis, so rate limiting passes through and stats are computed
straight from the database.
"""

from __future__ import annotations

import os

os.environ.setdefault("MP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MP_JWT_SECRET", "test-secret-test-secret-test-secret-0123")
os.environ.setdefault("MP_LOG_FORMAT", "console")
os.environ.setdefault("MP_LOG_LEVEL", "WARNING")

from collections.abc import AsyncGenerator, Awaitable, Callable
from itertools import count

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from marketpoints.auth.jwt import create_access_token, reset_keys
from marketpoints.config import get_settings
from marketpoints.database import close_db, get_engine, get_session, init_db
from marketpoints.db.base import Base
from marketpoints.db.models import Admin, Advertiser, User
from marketpoints.main import create_app
from marketpoints.redis_client import close_redis
from marketpoints.subjects.interfaces import SubjectRef

get_settings.cache_clear()
reset_keys()

_phones = count(1)


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh schema for every test."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()
    await close_redis()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for setup and assertions."""
    async for session in get_session():
        yield session
        break


@pytest_asyncio.fixture
async def client(database: None) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to a freshly built app."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Subject factories (setup rows are committed so request sessions see them)
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[SubjectRef]]:
    async def _make(full_name: str = "Sara Ahmed") -> SubjectRef:
        user = User(full_name=full_name, phone=f"0790{next(_phones):07d}")
        db_session.add(user)
        await db_session.commit()
        return SubjectRef(user.id, "user")

    return _make


@pytest.fixture
def make_advertiser(db_session: AsyncSession) -> Callable[..., Awaitable[SubjectRef]]:
    async def _make(full_name: str = "Omar Khalil", store_name: str | None = "Omar Motors") -> SubjectRef:
        advertiser = Advertiser(full_name=full_name, store_name=store_name, phone=f"0780{next(_phones):07d}")
        db_session.add(advertiser)
        await db_session.commit()
        return SubjectRef(advertiser.id, "advertiser")

    return _make


@pytest.fixture
def make_admin(db_session: AsyncSession) -> Callable[..., Awaitable[int]]:
    async def _make(username: str = "ops", is_active: bool = True) -> int:
        admin = Admin(username=f"{username}{next(_phones)}", full_name="Ops Admin", is_active=is_active)
        db_session.add(admin)
        await db_session.commit()
        return admin.id

    return _make


def bearer(subject_id: int, subject_type: str) -> dict[str, str]:
    """Authorization header for a freshly minted access token."""
    return {"Authorization": f"Bearer {create_access_token(subject_id, subject_type)}"}


@pytest.fixture
def auth_headers() -> Callable[[int, str], dict[str, str]]:
    return bearer
