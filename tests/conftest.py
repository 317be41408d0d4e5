"""
Shared fixtures for the stats tracker tests.

Every test gets its own SQLite database file under tmp_path, a controllable
clock and fakes for the external fetcher and the inter-batch sleep.
"""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from tracker.database.database import Database
from tracker.database.models import PlatformAccount
from tracker.services.fetcher import FetchNotFoundError


class FakeClock:
    """Callable clock returning a settable naive UTC time."""

    def __init__(self, start: datetime = datetime(2024, 3, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeFetcher:
    """Fetcher returning canned metrics or raising canned errors per username."""

    def __init__(self):
        self.responses = {}
        self.errors = {}
        self.calls = []

    def set(self, username: str, metrics: dict):
        self.responses[username] = metrics

    def fail(self, username: str, error: Exception):
        self.errors[username] = error

    async def fetch(self, platform, username: str):
        self.calls.append((platform, username))
        if username in self.errors:
            raise self.errors[username]
        if username not in self.responses:
            raise FetchNotFoundError(f"unknown user {username}")
        return self.responses[username]


class RecordingSleep:
    """Awaitable sleep that records the requested delays instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest_asyncio.fixture
async def db(tmp_path, clock):
    database = Database(f"sqlite:///{tmp_path / 'tracker_test.db'}", clock=clock)
    await database.initialize()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def make_user(db, clock):
    """Create users with distinct, increasing creation times."""
    async def _make_user(username: str, is_public: bool = True):
        user = await db.create_user(username, is_public=is_public)
        clock.advance(seconds=1)
        return user
    return _make_user


@pytest_asyncio.fixture
async def set_metrics(db):
    """Write metric columns of an account directly and recompute its owner's score."""
    async def _set_metrics(account_id: int, **fields):
        async with db.transaction() as session:
            account = await session.get(PlatformAccount, account_id)
            for name, value in fields.items():
                setattr(account, name, value)
            await session.flush()
            await db.score_aggregator.recompute(session, account.user_id)
    return _set_metrics
