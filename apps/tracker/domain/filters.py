from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable

from .errors import ValidationError
from .models import Ticket, TicketPriority, TicketStatus

SORTABLE_FIELDS: tuple[str, ...] = ("created_at", "updated_at", "priority", "status", "title")


@dataclass(frozen=True, slots=True)
class TicketFilter:
    """Conjunction of optional predicates over tickets.

    ``None`` disables a predicate; an empty set matches nothing.
    """

    created_from: datetime | None = None
    created_to: datetime | None = None
    statuses: frozenset[TicketStatus] | None = None
    priorities: frozenset[TicketPriority] | None = None
    categories: frozenset[str] | None = None
    submitted_by: str | None = None
    assigned_to: str | None = None

    def __post_init__(self) -> None:
        if self.created_from and self.created_to and _utc(self.created_from) > _utc(self.created_to):
            raise ValidationError("created_from must not be after created_to", field="created_from")

    @classmethod
    def build(
        cls,
        *,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        statuses: Iterable[TicketStatus | str] | None = None,
        priorities: Iterable[TicketPriority | str] | None = None,
        categories: Iterable[str] | None = None,
        submitted_by: str | None = None,
        assigned_to: str | None = None,
    ) -> "TicketFilter":
        """Coerce loosely typed query values into a filter."""

        try:
            status_set = None if statuses is None else frozenset(TicketStatus(value) for value in statuses)
        except ValueError as exc:
            raise ValidationError(str(exc), field="status") from exc
        try:
            priority_set = (
                None if priorities is None else frozenset(TicketPriority(value) for value in priorities)
            )
        except ValueError as exc:
            raise ValidationError(str(exc), field="priority") from exc
        return cls(
            created_from=created_from,
            created_to=created_to,
            statuses=status_set,
            priorities=priority_set,
            categories=None if categories is None else frozenset(categories),
            submitted_by=submitted_by,
            assigned_to=assigned_to,
        )

    def restricted_to_owner(self, owner_id: str) -> "TicketFilter":
        return replace(self, submitted_by=owner_id)

    def matches(self, ticket: Ticket) -> bool:
        created_at = _utc(ticket.created_at)
        if self.created_from is not None and created_at < _utc(self.created_from):
            return False
        if self.created_to is not None and created_at > _utc(self.created_to):
            return False
        if self.statuses is not None and ticket.status not in self.statuses:
            return False
        if self.priorities is not None and ticket.priority not in self.priorities:
            return False
        if self.categories is not None and ticket.category not in self.categories:
            return False
        if self.submitted_by is not None and ticket.submitted_by != self.submitted_by:
            return False
        if self.assigned_to is not None and ticket.assigned_to != self.assigned_to:
            return False
        return True


@dataclass(frozen=True, slots=True)
class TicketSort:
    """Single-key ordering for ticket listings."""

    field: str = "created_at"
    descending: bool = True

    @classmethod
    def parse(cls, value: str | None) -> "TicketSort":
        """Parse ``"field"`` or ``"-field"``; defaults to newest first."""

        if not value:
            return cls()
        raw = value.strip()
        descending = raw.startswith("-")
        name = raw.lstrip("-").replace("createdAt", "created_at").replace("updatedAt", "updated_at")
        if name not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{name}'", field="sort")
        return cls(field=name, descending=descending)


@dataclass(frozen=True, slots=True)
class Page:
    """Validated page request."""

    number: int = 1
    size: int = 10

    @classmethod
    def of(cls, number: int, size: int, *, max_size: int = 100) -> "Page":
        if number < 1:
            raise ValidationError("page must be at least 1", field="page")
        if size < 1 or size > max_size:
            raise ValidationError(f"page_size must be between 1 and {max_size}", field="page_size")
        return cls(number=number, size=size)

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.size


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
