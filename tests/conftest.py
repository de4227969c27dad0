"""Shared test fixtures."""

from __future__ import annotations

import os

# Settings are read on first use; pin the test environment before importing the app.
os.environ["BIX_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BIX_ADMIN_USER_IDS"] = '["admin-1"]'
os.environ["BIX_JWT_SECRET"] = "test-secret-key-for-the-bix-engine-suite"
os.environ["BIX_RATE_LIMIT_BACKEND"] = "memory"
os.environ["BIX_LOG_FORMAT"] = "console"
os.environ["BIX_SEED_CATALOG"] = "true"

from collections.abc import AsyncGenerator, AsyncIterator  # noqa: E402
from contextlib import aclosing, asynccontextmanager  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from bix.auth.tokens import create_access_token  # noqa: E402
from bix.catalog.seed import seed_catalog  # noqa: E402
from bix.config import get_settings  # noqa: E402
from bix.database import close_db, create_all, get_session, init_db  # noqa: E402
from bix.db.models import UserProfile  # noqa: E402
from bix.main import create_app  # noqa: E402
from bix.profiles.service import get_or_create_profile  # noqa: E402

get_settings.cache_clear()

ADMIN_ID = "admin-1"


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """A session on the app's engine that is closed on exit."""
    async with aclosing(get_session()) as sessions:
        async for session in sessions:
            yield session
            break


async def make_profile(db: AsyncSession, user_id: str, *, balance: int = 0, **fields) -> UserProfile:
    """Provision a profile and set any starting fields directly."""
    profile, _ = await get_or_create_profile(db, user_id, admin_user_ids={ADMIN_ID})
    profile.balance = balance
    for name, value in fields.items():
        setattr(profile, name, value)
    await db.commit()
    return profile


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database with the catalog seeded."""
    settings = get_settings()
    await init_db(settings.database_url)
    await create_all()
    async with session_scope() as session:
        await seed_catalog(session)
        yield session
    await close_db()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a fresh app and an empty, seeded database.

    ASGITransport does not run the lifespan, so the database is set up here.
    """
    app = create_app()
    settings = get_settings()
    await init_db(settings.database_url)
    await create_all()
    async with session_scope() as session:
        await seed_catalog(session)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_db()


async def engine_call(client: AsyncClient, user_id: str, action: str, **fields) -> tuple[int, dict]:
    """POST one action to the reward engine as user_id."""
    response = await client.post(
        "/api/v1/reward-engine",
        json={"action": action, **fields},
        headers=auth_headers(user_id),
    )
    return response.status_code, response.json()
