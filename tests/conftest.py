"""Shared test fixtures.

Every test gets its own SQLite file (aiosqlite) with the schema built from
the ORM metadata. Redis is not initialised: publishing becomes a no-op and
rate limiting is bypassed, unless a test passes its own AsyncMock.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

os.environ["COREMINE_JWT_ALGORITHM"] = "HS256"
os.environ["COREMINE_JWT_SECRET"] = "test-secret-key-with-at-least-32-bytes"
os.environ["COREMINE_LOG_FORMAT"] = "console"
os.environ["COREMINE_ENVIRONMENT"] = "test"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coremine.auth.jwt import create_access_token, reset_keys
from coremine.config import get_settings
from coremine.database import close_db, get_engine, get_session_factory, init_db
from coremine.db.base import Base
from coremine.db.models import Epoch, MiningSession, Nft, Profile, UserBalance, UserNft

get_settings.cache_clear()
reset_keys()

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database with all tables."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'coremine.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for service-level tests. Commit or roll back before handing over to another session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis() -> AsyncMock:
    """Stand-in Redis client; assert on ``redis.publish``."""
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=1)
    return mock


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the ASGI app (database already initialised)."""
    from coremine.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build an Authorization header for a user id."""

    def _make(user_id: str = "user-1") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _make


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


async def add_profile(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    *,
    streak_days: int = 0,
    mining_rate: float = 1.0,
    tokens: float | None = None,
) -> None:
    async with session_factory() as s:
        s.add(Profile(id=user_id, streak_days=streak_days, mining_rate=mining_rate, mining_boost=0.0))
        if tokens is not None:
            s.add(UserBalance(user_id=user_id, tokens=tokens))
        await s.commit()


async def add_epoch(
    session_factory: async_sessionmaker[AsyncSession],
    start: datetime = T0,
    days: int = 30,
    *,
    active: bool = True,
) -> int:
    async with session_factory() as s:
        epoch = Epoch(start_time=start, end_time=start + timedelta(days=days), is_active=active)
        s.add(epoch)
        await s.commit()
        return epoch.id


async def add_session(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    epoch_id: int,
    tokens: float,
    *,
    active: bool = False,
    start: datetime = T0,
    minutes: int = 60,
) -> str:
    async with session_factory() as s:
        row = MiningSession(
            user_id=user_id,
            epoch_id=epoch_id,
            start_time=start,
            end_time=None if active else start + timedelta(minutes=minutes),
            active=active,
            tokens_mined=tokens,
        )
        s.add(row)
        await s.commit()
        return row.id


async def add_nft(
    session_factory: async_sessionmaker[AsyncSession],
    nft_id: str,
    *,
    price: float = 50.0,
    boost: float = 50.0,
    owner: str | None = None,
) -> None:
    async with session_factory() as s:
        s.add(Nft(id=nft_id, name=nft_id.title(), price=price, boost_percentage=boost))
        await s.flush()
        if owner is not None:
            s.add(UserNft(user_id=owner, nft_id=nft_id, purchased_at=T0))
        await s.commit()


async def balance_of(session_factory: async_sessionmaker[AsyncSession], user_id: str) -> float:
    from coremine.balances import get_balance

    async with session_factory() as s:
        return await get_balance(s, user_id)
