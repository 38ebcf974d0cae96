"""Shared test fixtures."""

import datetime as dt

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from listing_dedup.models import Base
from listing_dedup.models.listing import Listing

TENANT = "tenant-1"

# Fixed reference time for timing-sensitive tests
NOW = dt.datetime(2026, 3, 1, 12, 0, 0)


def listing_dict(id: str = "L1", **overrides) -> dict:
    """Helper: a listing-shaped dict as consumed by the pure matchers."""
    data = {
        "id": id,
        "tenant_id": TENANT,
        "vin": None,
        "external_id": f"ext-{id}",
        "source_site": "SiteA",
        "make": "Honda",
        "model": "Civic",
        "year": 2020,
        "price": 18000.0,
        "mileage": 42000,
        "exterior_color": "Blue",
        "image_hash": None,
        "city": "Springfield",
        "latitude": 39.7817,
        "longitude": -89.6501,
        "dealer_id": None,
        "is_active": True,
        "first_seen_at": NOW - dt.timedelta(days=30),
        "last_seen_at": NOW,
        "deactivated_at": None,
        "days_on_market": None,
        "relisted_count": 0,
    }
    data.update(overrides)
    return data


def make_listing(id: str = "L1", **overrides) -> Listing:
    """Helper: a ``Listing`` row with the same defaults as ``listing_dict``."""
    return Listing(**listing_dict(id, **overrides))


@pytest.fixture
async def test_engine():
    """Create an async SQLite in-memory engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncSession:
    """A session for single-record operations; tests commit explicitly."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def add_listings(test_session_factory):
    """Persist listings in their own transaction."""

    async def _add(*listings: Listing) -> None:
        async with test_session_factory() as session, session.begin():
            session.add_all(listings)

    return _add
