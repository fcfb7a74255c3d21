from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from apps.tracker.domain.models import Actor, Category, Role
from apps.tracker.services.analytics import AnalyticsService
from apps.tracker.services.categories import CategoryService
from apps.tracker.services.store import CategoryStore, TicketStore
from apps.tracker.services.tickets import TicketService
from apps.tracker.services.tracker import MutationTracker

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic UTC clock advancing a fixed step on every call."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(minutes=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value

    def advance(self, delta: timedelta) -> None:
        self.current = self.current + delta


def make_category(
    category_id: str = "cat-bug",
    name: str = "Bug",
    *,
    is_active: bool = True,
) -> Category:
    return Category(
        id=category_id,
        name=name,
        created_by="admin",
        created_at=START,
        updated_at=START,
        is_active=is_active,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin", role=Role.ADMIN)


@pytest.fixture
def support() -> Actor:
    return Actor(id="support", role=Role.SUPPORT)


@pytest.fixture
def client_user() -> Actor:
    return Actor(id="client", role=Role.CLIENT)


@pytest.fixture
def other_client() -> Actor:
    return Actor(id="someone-else", role=Role.CLIENT)


@pytest_asyncio.fixture
async def engine():
    db_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with db_engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
    try:
        yield db_engine
    finally:
        await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def ticket_store(session_factory, engine, clock) -> TicketStore:
    return TicketStore(session_factory, engine=engine, clock=clock)


@pytest.fixture
def category_store(session_factory, clock) -> CategoryStore:
    return CategoryStore(session_factory, clock=clock)


@pytest_asyncio.fixture
async def bug_category(category_store) -> Category:
    return await category_store.insert(make_category())


@pytest.fixture
def tracker(category_store, clock, id_factory) -> MutationTracker:
    return MutationTracker(category_store, clock=clock, id_factory=id_factory)


@pytest.fixture
def ticket_service(ticket_store, tracker) -> TicketService:
    return TicketService(ticket_store, tracker)


@pytest.fixture
def category_service(category_store, ticket_store, clock, id_factory) -> CategoryService:
    return CategoryService(category_store, ticket_store, clock=clock, id_factory=id_factory)


@pytest.fixture
def analytics_service(ticket_store, category_store) -> AnalyticsService:
    return AnalyticsService(ticket_store, category_store)
