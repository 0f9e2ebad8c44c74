"""
Shared fixtures: a throwaway SQLite database per test plus in-memory stand-ins for
the external calendar and the LINE notifier.
"""
import os

# Settings are read at import time; point them at SQLite before anything imports app.*
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-booking.db")

from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import app.models  # noqa: F401 - register tables
from app.models.user import User
from app.services.calendar_service import BusyInterval
from app.services.reservation_service import SlotLockRegistry


class StubCalendar:
    """Busy-interval source and mirror writer in one, like GoogleCalendarClient."""

    def __init__(self, busy: list[BusyInterval] | None = None, fail_writes: bool = False) -> None:
        self.busy = list(busy or [])
        self.fail_writes = fail_writes
        self.busy_calls: list[date] = []
        self.created: list[tuple[str, date, str, str]] = []
        self.deleted: list[str] = []

    async def fetch_busy(self, d: date) -> list[BusyInterval]:
        self.busy_calls.append(d)
        return list(self.busy)

    async def create_event(self, summary: str, d: date, start_time: str, end_time: str) -> str | None:
        if self.fail_writes:
            raise RuntimeError("calendar down")
        self.created.append((summary, d, start_time, end_time))
        return f"evt-{len(self.created)}"

    async def delete_event(self, event_ref: str) -> bool:
        if self.fail_writes:
            raise RuntimeError("calendar down")
        self.deleted.append(event_ref)
        return True


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str | None, date, str]] = []

    async def notify(self, kind, recipient_name, d, time_range) -> None:
        if self.fail:
            raise RuntimeError("LINE down")
        self.sent.append((kind, recipient_name, d, time_range))


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def locks() -> SlotLockRegistry:
    return SlotLockRegistry(timeout=2.0)


@pytest.fixture
def calendar() -> StubCalendar:
    return StubCalendar()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


async def make_user(session: AsyncSession, line_user_id: str, name: str = "Student") -> User:
    user = User(line_user_id=line_user_id, display_name=name)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
async def alice(session) -> User:
    return await make_user(session, "U_alice", "Alice")


@pytest.fixture
async def bob(session) -> User:
    return await make_user(session, "U_bob", "Bob")
