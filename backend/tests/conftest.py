"""Pytest configuration and fixtures for FactoryLedger tests.

Each test gets its own SQLite file database (aiosqlite).  Transactions are
opened with BEGIN IMMEDIATE so concurrent sessions serialize on the write
lock the way row locks serialize them on Postgres, and SAVEPOINTs work.
Redis is never required: caching is switched off unless a test opts in.
"""

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import factoryledger.models  # noqa: F401  (register tables on Base.metadata)
from factoryledger.config import settings
from factoryledger.database import Base, get_db, request_session
from factoryledger.main import app
from factoryledger.services import inventory

ACTOR = "user-test-0001"


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Fresh SQLite file database with every table created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'factoryledger_test.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for service-level tests.  Uncommitted work is rolled back."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; each request gets its own commit-or-rollback session."""

    async def override_get_db():
        async with request_session(session_factory) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def actor_headers() -> dict:
    return {"X-Actor-Id": ACTOR}


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    monkeypatch.setattr(settings, "cache_enabled", False)


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def make_material(db: AsyncSession):
    """Factory: raw material account, optionally with purchases [(qty, unit_cost)]."""

    async def _make(name: str = "Passion fruit pulp", purchases=(), threshold="0"):
        account = await inventory.create_account(
            db,
            name=name,
            kind="raw_material",
            unit="kg",
            minimum_threshold=Decimal(threshold),
            created_by=ACTOR,
        )
        for quantity, unit_cost in purchases:
            await inventory.post_purchase(
                db, account.id, Decimal(str(quantity)), Decimal(str(unit_cost)), recorded_by=ACTOR
            )
        return account

    return _make


@pytest.fixture
def make_bottle(db: AsyncSession):
    """Factory: bottle account with capacity, price, and starting stock."""

    async def _make(
        name: str = "250 ml PET",
        capacity_ml: str = "250",
        unit_price: str = "4",
        stock: str = "0",
        threshold: str = "0",
    ):
        return await inventory.create_account(
            db,
            name=name,
            kind="bottle",
            unit="bottle",
            capacity_ml=Decimal(capacity_ml),
            unit_price=Decimal(unit_price),
            minimum_threshold=Decimal(threshold),
            opening_quantity=Decimal(stock),
            created_by=ACTOR,
        )

    return _make


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "cache: Cache tests")
