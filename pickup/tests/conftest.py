"""
Shared pytest configuration for pickup tests.

Every test gets its own in-memory SQLite database (aiosqlite). DATABASE_URL is
forced to SQLite before any pickup module is imported so the application
engine can never point at a real PostgreSQL database during tests.
"""

import json
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from pickup.database.db import Base  # noqa: E402
from pickup.services import group_service, user_service  # noqa: E402
from pickup.services.event_hub import EventHub  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def make_test_engine():
    """Single-connection in-memory engine so every session sees the same data."""
    return create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest_asyncio.fixture
async def engine():
    engine = make_test_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def hub():
    """Fresh event hub per test."""
    return EventHub()


@pytest.fixture
def make_websocket():
    """Factory for mock transport connections."""

    def _make():
        ws = AsyncMock()
        ws.send_text = AsyncMock()
        ws.close = AsyncMock()
        return ws

    return _make


@pytest.fixture
def sent_events():
    """Decode the events a mock websocket received, optionally filtered by type."""

    def _events(ws, event_type=None):
        events = [json.loads(call.args[0]) for call in ws.send_text.await_args_list]
        if event_type is not None:
            events = [e for e in events if e["type"] == event_type]
        return events

    return _events


@pytest_asyncio.fixture
async def users(db_session):
    """Six users; the first one hosts in most tests."""
    return [
        await user_service.create_user(db_session, name)
        for name in ("alice", "bob", "carol", "dave", "erin", "frank")
    ]


@pytest_asyncio.fixture
async def group(db_session, users):
    """A group containing every user from the ``users`` fixture."""
    result = await group_service.create_group(db_session, users[0], "Tuesday Pickup")
    assert result["success"]
    for user_id in users[1:]:
        joined = await group_service.join_group(db_session, user_id, result["group"]["invite_code"])
        assert joined["success"]
    return result["group"]
