"""
Centralized Test Configuration.
"""

import pytest
from datetime import date
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from finance_backend.app.main import app
from finance_backend.app.db.session import get_db
from finance_backend.app.core.dependencies import get_balance_cache, get_bootstrapper
from finance_backend.app.core.jwt import create_access_token
from finance_backend.app.models.account import Account
from finance_backend.app.services.bootstrap import SchemaBootstrapper
from finance_backend.app.services.cache import BalanceCache, MemoryBackend, RedisBackend
from finance_backend.app.services.source_records import SourceRecordService

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                removed += 1
        return removed

    async def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        for key in list(self.store):
            if key.startswith(prefix):
                yield key

    async def flushdb(self):
        self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
async def engine():
    """Fresh in-memory database per test, bootstrapped like the app does at startup."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def bootstrapper(engine):
    bootstrapper = SchemaBootstrapper(engine)
    report = await bootstrapper.ensure()
    assert report.tables_ready
    assert report.view_ready
    return bootstrapper


@pytest.fixture
def session_factory(engine, bootstrapper):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def balance_cache():
    return BalanceCache(MemoryBackend(), ttl_seconds=60)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def redis_cache(mock_redis):
    return BalanceCache(RedisBackend(mock_redis), ttl_seconds=60)


@pytest.fixture
async def client(session_factory, bootstrapper, balance_cache):
    """Async client for testing, wired to the per-test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bootstrapper] = lambda: bootstrapper
    app.dependency_overrides[get_balance_cache] = lambda: balance_cache

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


def make_token(role: str, user_id: str = "user-1", username: str = "treasurer") -> str:
    return create_access_token(data={"sub": username, "user_id": user_id, "role": role})


@pytest.fixture
def officer_headers():
    return {"Authorization": f"Bearer {make_token('FINANCE_OFFICER')}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token('ADMIN', user_id='admin-1', username='admin')}"}


@pytest.fixture
def viewer_headers():
    return {"Authorization": f"Bearer {make_token('VIEWER', user_id='viewer-1', username='viewer')}"}


@pytest.fixture
async def account(db_session):
    """Bank account with an opening balance of 100."""
    account = Account(id="acc-main", name="Main Account", opening_balance=100.0)
    db_session.add(account)
    await db_session.commit()
    return account


@pytest.fixture
async def second_account(db_session):
    account = Account(id="acc-savings", name="Savings", opening_balance=0.0)
    db_session.add(account)
    await db_session.commit()
    return account


@pytest.fixture
def today():
    return date(2024, 3, 15)


@pytest.fixture
def records(db_session, balance_cache):
    """Source-record writer sharing the test session and cache."""
    return SourceRecordService(db_session, balance_cache)
