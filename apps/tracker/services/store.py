from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, Sequence

from sqlalchemy import case, delete as sa_delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from apps.tracker.domain.errors import ConflictError, NotFoundError, PersistenceError
from apps.tracker.domain.filters import Page, TicketFilter, TicketSort
from apps.tracker.domain.models import (
    Attachment,
    Category,
    Comment,
    HistoryAction,
    HistoryEntry,
    Ticket,
    TicketPriority,
    TicketStatus,
)
from packages.db.models import CategoryTable, TicketCommentTable, TicketHistoryTable, TicketTable

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _persistence_guard(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store failure during %s: %s", operation, exc)
        raise PersistenceError(f"Failed to {operation}") from exc


class TicketStore:
    """Durable storage for tickets, their comments and history.

    ``save`` never diffs fields: it persists the new state and appends the
    history entries and comments that extend past the expected snapshot.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._clock = clock or _utcnow

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        with _persistence_guard("create schema"):
            async with self._engine.begin() as connection:
                await connection.run_sync(SQLModel.metadata.create_all)

    async def load(self, ticket_id: str) -> Ticket:
        with _persistence_guard("load ticket"):
            async with self._session_factory() as session:
                row = await session.get(TicketTable, ticket_id)
                if row is None:
                    raise NotFoundError("ticket", ticket_id)
                tickets = await self._hydrate(session, [row])
        return tickets[0]

    async def insert(self, ticket: Ticket) -> Ticket:
        with _persistence_guard("insert ticket"):
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(self._ticket_to_row(ticket))
                    session.add_all(self._history_rows(ticket.id, ticket.history, start=0))
                    session.add_all(self._comment_rows(ticket.id, ticket.comments, start=0))
        return ticket

    async def save(self, ticket: Ticket, expected: Ticket) -> Ticket:
        if ticket.id != expected.id:
            raise ValueError("Cannot save a ticket against another ticket's snapshot")
        if ticket.history[: len(expected.history)] != expected.history:
            raise ValueError("Ticket history is append-only")
        if ticket.comments[: len(expected.comments)] != expected.comments:
            raise ValueError("Ticket comments are append-only")

        now = self._clock()
        version = expected.version + 1
        with _persistence_guard("save ticket"):
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(TicketTable, ticket.id)
                    if row is None:
                        raise NotFoundError("ticket", ticket.id)
                    if row.version != expected.version:
                        raise ConflictError(
                            f"Ticket {ticket.id} was modified concurrently",
                            entity="ticket",
                            entity_id=ticket.id,
                        )
                    self._copy_to_row(ticket, row)
                    row.version = version
                    row.updated_at = now
                    session.add_all(
                        self._history_rows(
                            ticket.id, ticket.history[len(expected.history):], start=len(expected.history)
                        )
                    )
                    session.add_all(
                        self._comment_rows(
                            ticket.id, ticket.comments[len(expected.comments):], start=len(expected.comments)
                        )
                    )
        return replace(ticket, version=version, updated_at=now)

    async def delete(self, ticket_id: str) -> Ticket:
        ticket = await self.load(ticket_id)
        with _persistence_guard("delete ticket"):
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        sa_delete(TicketHistoryTable).where(TicketHistoryTable.ticket_id == ticket_id)
                    )
                    await session.execute(
                        sa_delete(TicketCommentTable).where(TicketCommentTable.ticket_id == ticket_id)
                    )
                    await session.execute(sa_delete(TicketTable).where(TicketTable.id == ticket_id))
        return ticket

    async def query(
        self, ticket_filter: TicketFilter, sort: TicketSort, page: Page
    ) -> tuple[list[Ticket], int]:
        conditions = self._conditions(ticket_filter)
        column = self._sort_column(sort.field)
        order = column.desc() if sort.descending else column.asc()
        with _persistence_guard("query tickets"):
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(TicketTable).where(*conditions)
                )
                result = await session.execute(
                    select(TicketTable)
                    .where(*conditions)
                    .order_by(order, TicketTable.id.asc())
                    .offset(page.offset)
                    .limit(page.size)
                )
                tickets = await self._hydrate(session, result.scalars().all())
        return tickets, int(total or 0)

    async def find(self, ticket_filter: TicketFilter, *, include_history: bool = True) -> list[Ticket]:
        with _persistence_guard("find tickets"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TicketTable)
                    .where(*self._conditions(ticket_filter))
                    .order_by(TicketTable.created_at.asc(), TicketTable.id.asc())
                )
                return await self._hydrate(session, result.scalars().all(), include_history=include_history)

    async def count_by_category(self, category_id: str) -> int:
        with _persistence_guard("count tickets"):
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(TicketTable).where(TicketTable.category_id == category_id)
                )
        return int(total or 0)

    @staticmethod
    def _sort_column(field: str) -> Any:
        # Enum columns order by rank (low..critical, new..reopened), not alphabetically.
        if field == "priority":
            return case({item.value: rank for rank, item in enumerate(TicketPriority)}, value=TicketTable.priority)
        if field == "status":
            return case({item.value: rank for rank, item in enumerate(TicketStatus)}, value=TicketTable.status)
        return getattr(TicketTable, field)

    @staticmethod
    def _conditions(ticket_filter: TicketFilter) -> list[Any]:
        conditions: list[Any] = []
        if ticket_filter.created_from is not None:
            conditions.append(TicketTable.created_at >= _as_utc(ticket_filter.created_from))
        if ticket_filter.created_to is not None:
            conditions.append(TicketTable.created_at <= _as_utc(ticket_filter.created_to))
        if ticket_filter.statuses is not None:
            conditions.append(TicketTable.status.in_(sorted(status.value for status in ticket_filter.statuses)))
        if ticket_filter.priorities is not None:
            conditions.append(
                TicketTable.priority.in_(sorted(priority.value for priority in ticket_filter.priorities))
            )
        if ticket_filter.categories is not None:
            conditions.append(TicketTable.category_id.in_(sorted(ticket_filter.categories)))
        if ticket_filter.submitted_by is not None:
            conditions.append(TicketTable.submitted_by == ticket_filter.submitted_by)
        if ticket_filter.assigned_to is not None:
            conditions.append(TicketTable.assigned_to == ticket_filter.assigned_to)
        return conditions

    async def _hydrate(
        self,
        session: AsyncSession,
        rows: Sequence[TicketTable],
        *,
        include_history: bool = True,
    ) -> list[Ticket]:
        if not rows:
            return []
        ids = [row.id for row in rows]

        comments: dict[str, list[Comment]] = defaultdict(list)
        comment_result = await session.execute(
            select(TicketCommentTable)
            .where(TicketCommentTable.ticket_id.in_(ids))
            .order_by(TicketCommentTable.ticket_id, TicketCommentTable.position)
        )
        for comment_row in comment_result.scalars().all():
            comments[comment_row.ticket_id].append(self._row_to_comment(comment_row))

        history: dict[str, list[HistoryEntry]] = defaultdict(list)
        if include_history:
            history_result = await session.execute(
                select(TicketHistoryTable)
                .where(TicketHistoryTable.ticket_id.in_(ids))
                .order_by(TicketHistoryTable.ticket_id, TicketHistoryTable.position)
            )
            for history_row in history_result.scalars().all():
                history[history_row.ticket_id].append(self._row_to_entry(history_row))

        return [
            self._row_to_ticket(row, comments=comments[row.id], history=history[row.id]) for row in rows
        ]

    @staticmethod
    def _copy_to_row(ticket: Ticket, row: TicketTable) -> None:
        row.title = ticket.title
        row.description = ticket.description
        row.category_id = ticket.category
        row.priority = ticket.priority.value
        row.status = ticket.status.value
        row.assigned_to = ticket.assigned_to
        row.tags = list(ticket.tags)
        row.attachments = [attachment.to_dict() for attachment in ticket.attachments]
        row.resolved_at = ticket.resolved_at
        row.closed_at = ticket.closed_at
        row.reopened_at = ticket.reopened_at

    @classmethod
    def _ticket_to_row(cls, ticket: Ticket) -> TicketTable:
        row = TicketTable(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            category_id=ticket.category,
            priority=ticket.priority.value,
            status=ticket.status.value,
            submitted_by=ticket.submitted_by,
            version=ticket.version,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )
        cls._copy_to_row(ticket, row)
        return row

    @staticmethod
    def _history_rows(ticket_id: str, entries: Iterable[HistoryEntry], *, start: int) -> list[TicketHistoryTable]:
        return [
            TicketHistoryTable(
                ticket_id=ticket_id,
                position=position,
                action=entry.action.value,
                field=entry.field,
                old_value=entry.old_value,
                new_value=entry.new_value,
                performed_by=entry.performed_by,
                timestamp=entry.timestamp,
            )
            for position, entry in enumerate(entries, start=start)
        ]

    @staticmethod
    def _comment_rows(ticket_id: str, comments: Iterable[Comment], *, start: int) -> list[TicketCommentTable]:
        return [
            TicketCommentTable(
                id=comment.id,
                ticket_id=ticket_id,
                position=position,
                text=comment.text,
                author=comment.author,
                attachments=[attachment.to_dict() for attachment in comment.attachments],
                created_at=comment.created_at,
            )
            for position, comment in enumerate(comments, start=start)
        ]

    @staticmethod
    def _row_to_ticket(
        row: TicketTable, *, comments: Sequence[Comment], history: Sequence[HistoryEntry]
    ) -> Ticket:
        return Ticket(
            id=row.id,
            title=row.title,
            description=row.description,
            category=row.category_id,
            priority=TicketPriority(row.priority),
            status=TicketStatus(row.status),
            submitted_by=row.submitted_by,
            assigned_to=row.assigned_to,
            tags=tuple(row.tags or ()),
            attachments=tuple(Attachment.from_dict(item) for item in row.attachments or ()),
            resolved_at=_optional_datetime(row.resolved_at),
            closed_at=_optional_datetime(row.closed_at),
            reopened_at=_optional_datetime(row.reopened_at),
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            comments=tuple(comments),
            history=tuple(history),
            version=row.version,
        )

    @staticmethod
    def _row_to_comment(row: TicketCommentTable) -> Comment:
        return Comment(
            id=row.id,
            text=row.text,
            author=row.author,
            created_at=_ensure_datetime(row.created_at),
            attachments=tuple(Attachment.from_dict(item) for item in row.attachments or ()),
        )

    @staticmethod
    def _row_to_entry(row: TicketHistoryTable) -> HistoryEntry:
        return HistoryEntry(
            action=HistoryAction(row.action),
            field=row.field,
            old_value=row.old_value,
            new_value=row.new_value,
            performed_by=row.performed_by,
            timestamp=_ensure_datetime(row.timestamp),
        )


class CategoryStore:
    """Durable storage for categories; also resolves category references."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or _utcnow

    async def resolve(self, category_id: str) -> Category | None:
        with _persistence_guard("resolve category"):
            async with self._session_factory() as session:
                row = await session.get(CategoryTable, category_id)
        return None if row is None else self._row_to_category(row)

    async def load(self, category_id: str) -> Category:
        category = await self.resolve(category_id)
        if category is None:
            raise NotFoundError("category", category_id)
        return category

    async def list(self, *, active: bool | None = None) -> list[Category]:
        statement = select(CategoryTable).order_by(CategoryTable.name.asc())
        if active is not None:
            statement = statement.where(CategoryTable.is_active == active)
        with _persistence_guard("list categories"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return [self._row_to_category(row) for row in result.scalars().all()]

    async def names(self, category_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted(set(category_ids))
        if not ids:
            return {}
        with _persistence_guard("resolve category names"):
            async with self._session_factory() as session:
                result = await session.execute(select(CategoryTable).where(CategoryTable.id.in_(ids)))
                return {row.id: row.name for row in result.scalars().all()}

    async def insert(self, category: Category) -> Category:
        try:
            with _persistence_guard("insert category"):
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._ensure_unique_name(session, category)
                        session.add(
                            CategoryTable(
                                id=category.id,
                                name=category.name,
                                description=category.description,
                                is_active=category.is_active,
                                created_by=category.created_by,
                                created_at=category.created_at,
                                updated_at=category.updated_at,
                            )
                        )
        except PersistenceError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise self._duplicate(category) from exc.__cause__
            raise
        return category

    async def save(self, category: Category) -> Category:
        now = self._clock()
        try:
            with _persistence_guard("save category"):
                async with self._session_factory() as session:
                    async with session.begin():
                        row = await session.get(CategoryTable, category.id)
                        if row is None:
                            raise NotFoundError("category", category.id)
                        if row.name != category.name:
                            await self._ensure_unique_name(session, category)
                        row.name = category.name
                        row.description = category.description
                        row.is_active = category.is_active
                        row.updated_at = now
        except PersistenceError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise self._duplicate(category) from exc.__cause__
            raise
        return replace(category, updated_at=now)

    async def delete(self, category_id: str) -> None:
        with _persistence_guard("delete category"):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        sa_delete(CategoryTable).where(CategoryTable.id == category_id)
                    )
        if not result.rowcount:
            raise NotFoundError("category", category_id)

    async def _ensure_unique_name(self, session: AsyncSession, category: Category) -> None:
        existing = await session.execute(
            select(CategoryTable.id).where(CategoryTable.name == category.name, CategoryTable.id != category.id)
        )
        if existing.first() is not None:
            raise self._duplicate(category)

    @staticmethod
    def _duplicate(category: Category) -> ConflictError:
        return ConflictError(
            f"Category name '{category.name}' already exists", entity="category", entity_id=category.id
        )

    @staticmethod
    def _row_to_category(row: CategoryTable) -> Category:
        return Category(
            id=row.id,
            name=row.name,
            description=row.description or "",
            is_active=bool(row.is_active),
            created_by=row.created_by,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else _ensure_datetime(value)


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
