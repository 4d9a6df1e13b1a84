import os

# database.py fails fast without a URL; the suite builds its own engine below
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import itertools
from datetime import datetime, time, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, select

from database import get_session
from main import app, get_clock
from models import Reservation, Room, User

# Monday 2 March 2026, before opening time
NOW = datetime(2026, 3, 2, 8, 0)
MONDAY = NOW.date()


def at(days: int, hour: int, minute: int = 0) -> datetime:
    """Timestamp `days` after the reference Monday."""
    return datetime.combine(MONDAY + timedelta(days=days), time(hour, minute))


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return lambda: NOW


async def _insert(db, obj):
    async with db() as session:
        session.add(obj)
        await session.commit()
        return obj


@pytest.fixture
def make_room(db):
    counter = itertools.count(1)

    async def _make(**overrides):
        data = {"name": f"Room {next(counter)}", "capacity": 10, "floor": 1}
        data.update(overrides)
        return await _insert(db, Room(**data))

    return _make


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(**overrides):
        n = next(counter)
        data = {
            "name": f"User {n}",
            "email": f"user{n}@example.com",
            "department": "Engineering",
            "max_capacity_allowed": 10,
            "is_admin": False,
        }
        data.update(overrides)
        return await _insert(db, User(**data))

    return _make


@pytest.fixture
def make_reservation(db):
    """Inserts a row directly, bypassing admission rules."""

    async def _make(room, user, starts_at=None, ends_at=None, **overrides):
        starts_at = starts_at or at(0, 10)
        data = {
            "room_id": room.id,
            "user_id": user.id,
            "title": "Team meeting",
            "starts_at": starts_at,
            "ends_at": ends_at or starts_at + timedelta(hours=1),
        }
        data.update(overrides)
        return await _insert(db, Reservation(**data))

    return _make


@pytest.fixture
def count_reservations(db):
    async def _count(**filters):
        statement = select(func.count()).select_from(Reservation)
        for name, value in filters.items():
            statement = statement.where(getattr(Reservation, name) == value)
        async with db() as session:
            return (await session.execute(statement)).scalar_one()

    return _count


@pytest_asyncio.fixture
async def client(db, clock):
    async def override_get_session():
        async with db() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
