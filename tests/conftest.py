"""
Travel Booking Backend — Test Configuration (conftest.py)
===========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test that touches storage gets its own SQLite file database
       (aiosqlite) with the full schema created from the ORM models.

Fixture Hierarchy (all function-scoped):
    ├── clock:            Mutable frozen "now" injected into BookingService
    ├── db_engine:        Fresh SQLite file database with all tables
    ├── session_factory:  async_sessionmaker bound to db_engine
    ├── db_session:       One AsyncSession for service-level tests
    ├── seed:             Users (owner, other, admin) and destinations
    ├── service:          BookingService with the frozen clock, no retry waits
    ├── owner/other/admin: Actor objects for the seeded users
    ├── mock_db_session:  AsyncMock session for failure-path tests
    └── test_client:      HTTPX AsyncClient against a fresh app
"""

import os

# Must be set before any app import reads settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["JWT_SECRET"] = "test-secret-not-for-production"

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import create_all, get_db_session
from app.models.destination import Destination
from app.models.user import User
from app.security import Actor, create_access_token
from app.services.booking_service import BookingService


@dataclass
class FrozenClock:
    """Callable clock; tests move time by assigning `now`."""

    now: datetime

    def __call__(self) -> datetime:
        return self.now


# ══════════════════════════════════════════════════════════════════════════
# Storage
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    await create_all(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(session_factory):
    """
    Users and destinations shared by service and route tests.

        villa:  100.00/night, max 4 guests
        cabin:   80.50/night, max 6 guests
        closed: inactive, cannot be booked
    """
    async with session_factory() as session:
        data = SimpleNamespace(
            owner=User(name="Ada Lovelace", email="ada@example.com"),
            other=User(name="Grace Hopper", email="grace@example.com"),
            admin=User(name="Site Admin", email="admin@example.com", role="admin"),
            villa=Destination(
                name="Santorini Villa",
                location="Santorini, Greece",
                category="beach",
                price=Decimal("100.00"),
                max_guests=4,
            ),
            cabin=Destination(
                name="Lakeside Cabin",
                location="Banff, Canada",
                category="nature",
                price=Decimal("80.50"),
                max_guests=6,
            ),
            closed=Destination(
                name="Closed Lodge",
                location="Nowhere",
                price=Decimal("50.00"),
                is_active=False,
            ),
        )
        session.add_all(list(vars(data).values()))
        await session.commit()
    return data


# ══════════════════════════════════════════════════════════════════════════
# Service & Actors
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def service(clock):
    return BookingService(clock=clock, retry_attempts=3, retry_min_wait=0, retry_max_wait=0)


@pytest.fixture
def owner(seed):
    return Actor(user_id=seed.owner.id, email=seed.owner.email)


@pytest.fixture
def other(seed):
    return Actor(user_id=seed.other.id, email=seed.other.email)


@pytest.fixture
def admin(seed):
    return Actor(user_id=seed.admin.id, email=seed.admin.email, role="admin")


@pytest.fixture
def mock_db_session():
    """AsyncSession stand-in for paths where the database itself fails."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.get = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════


def auth_headers(actor: Actor) -> dict:
    token = create_access_token(actor.user_id, actor.email, actor.role)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_client(session_factory, service):
    """
    HTTPX client for a fresh app whose DB dependency uses the test database.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/api/destinations")
    """
    from app.main import create_app

    app = create_app(booking_service=service)

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def headers_for():
    """Bearer header builder for a given Actor."""
    return auth_headers
