from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from opentelemetry import trace

from apps.tracker.domain.errors import ValidationError
from apps.tracker.domain.filters import Page, TicketFilter, TicketSort
from apps.tracker.domain.models import (
    Actor,
    Attachment,
    Comment,
    HistoryEntry,
    Role,
    Ticket,
    TicketStatus,
)
from apps.tracker.domain.state import TRACKED_FIELDS
from apps.tracker.policy.authorization import AuthorizationPolicy

from .store import TicketStore
from .tracker import MutationTracker

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True, slots=True)
class TicketPage:
    """One page of a ticket listing."""

    items: Sequence[Ticket]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


def _parse_status(value: Any) -> TicketStatus:
    if not value:
        raise ValidationError("Please provide status", field="status")
    try:
        return TicketStatus(value)
    except ValueError as exc:
        raise ValidationError(
            "Status must be new, in-progress, resolved, closed, or reopened", field="status"
        ) from exc


def _differs(snapshot: Ticket, name: str, value: Any) -> bool:
    current = getattr(snapshot, name)
    if isinstance(current, Enum):
        return value is not current and value != current.value
    if name == "tags":
        return not isinstance(value, (list, tuple, set, frozenset)) or set(value) != set(current)
    return value != current


class TicketService:
    """High level orchestration: load snapshot, authorize, track, save."""

    def __init__(
        self,
        store: TicketStore,
        tracker: MutationTracker,
        *,
        policy: AuthorizationPolicy | None = None,
        max_page_size: int = 100,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._policy = policy or AuthorizationPolicy()
        self._max_page_size = max_page_size

    async def create_ticket(self, fields: Mapping[str, Any], actor: Actor) -> Ticket:
        ticket = await self._tracker.apply_create(fields, actor)
        if ticket.status is not TicketStatus.NEW:
            self._policy.ensure_can_set_status(actor.role, True, ticket.status)
        with tracer.start_as_current_span("tickets.create"):
            await self._store.insert(ticket)
        logger.info("Ticket %s created by %s", ticket.id, actor.id)
        return ticket

    async def get_ticket(self, ticket_id: str, actor: Actor) -> Ticket:
        ticket = await self._store.load(ticket_id)
        self._policy.ensure_can_view(actor.role, actor.owns(ticket))
        return ticket

    async def list_tickets(
        self,
        ticket_filter: TicketFilter,
        actor: Actor,
        *,
        sort: str | TicketSort | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> TicketPage:
        if actor.role is Role.CLIENT:
            ticket_filter = ticket_filter.restricted_to_owner(actor.id)
        ordering = sort if isinstance(sort, TicketSort) else TicketSort.parse(sort)
        window = Page.of(page, page_size, max_size=self._max_page_size)
        items, total = await self._store.query(ticket_filter, ordering, window)
        return TicketPage(items=items, total=total, page=window.number, page_size=window.size)

    async def update_ticket(self, ticket_id: str, fields: Mapping[str, Any], actor: Actor) -> Ticket:
        if not fields:
            raise ValidationError("No fields provided for update")
        snapshot = await self._store.load(ticket_id)
        is_owner = actor.owns(snapshot)
        self._policy.ensure_can_view(actor.role, is_owner)
        # Only requested changes are gated; resending a current value is allowed.
        self._policy.ensure_can_mutate_fields(
            actor.role,
            is_owner,
            [name for name, value in fields.items() if name in TRACKED_FIELDS and _differs(snapshot, name, value)],
        )
        if "status" in fields:
            target = _parse_status(fields["status"])
            if target is not snapshot.status:
                self._policy.ensure_can_set_status(actor.role, is_owner, target)
        updated = await self._tracker.apply_update(snapshot, fields, actor)
        return await self._commit(snapshot, updated, actor, "updated")

    async def change_status(self, ticket_id: str, target_status: TicketStatus | str, actor: Actor) -> Ticket:
        target = _parse_status(target_status)
        snapshot = await self._store.load(ticket_id)
        self._policy.ensure_can_set_status(actor.role, actor.owns(snapshot), target)
        updated = await self._tracker.apply_update(snapshot, {"status": target}, actor)
        return await self._commit(snapshot, updated, actor, "status changed")

    async def assign_ticket(self, ticket_id: str, assignee_id: str, actor: Actor) -> Ticket:
        snapshot = await self._store.load(ticket_id)
        is_owner = actor.owns(snapshot)
        self._policy.ensure_can_mutate_fields(actor.role, is_owner, ["assigned_to"])
        if snapshot.status is TicketStatus.NEW:
            self._policy.ensure_can_set_status(actor.role, is_owner, TicketStatus.IN_PROGRESS)
        updated = await self._tracker.apply_assignment(snapshot, assignee_id, actor)
        return await self._commit(snapshot, updated, actor, "assigned")

    async def add_comment(
        self,
        ticket_id: str,
        text: str,
        actor: Actor,
        *,
        attachments: Iterable[Attachment | Mapping[str, Any]] = (),
    ) -> Ticket:
        snapshot = await self._store.load(ticket_id)
        self._policy.ensure_can_comment(actor.role, actor.owns(snapshot))
        updated = await self._tracker.apply_comment(snapshot, text, attachments, actor)
        return await self._commit(snapshot, updated, actor, "commented")

    async def get_comments(self, ticket_id: str, actor: Actor) -> Sequence[Comment]:
        ticket = await self.get_ticket(ticket_id, actor)
        return list(ticket.comments)

    async def add_attachments(
        self,
        ticket_id: str,
        attachments: Iterable[Attachment | Mapping[str, Any]],
        actor: Actor,
    ) -> Ticket:
        snapshot = await self._store.load(ticket_id)
        self._policy.ensure_can_attach(actor.role, actor.owns(snapshot))
        updated = await self._tracker.apply_attachments(snapshot, attachments, actor)
        return await self._commit(snapshot, updated, actor, "attachments added")

    async def get_history(self, ticket_id: str, actor: Actor) -> Sequence[HistoryEntry]:
        ticket = await self.get_ticket(ticket_id, actor)
        return list(ticket.history)

    async def delete_ticket(self, ticket_id: str, actor: Actor) -> Sequence[Attachment]:
        """Delete a ticket and return every attachment the file store should remove."""

        self._policy.ensure_can_delete(actor.role)
        with tracer.start_as_current_span("tickets.delete"):
            ticket = await self._store.delete(ticket_id)
        files = [*ticket.attachments, *(item for comment in ticket.comments for item in comment.attachments)]
        logger.info("Ticket %s deleted by %s; %d attachments to clean up", ticket_id, actor.id, len(files))
        return files

    async def _commit(self, snapshot: Ticket, updated: Ticket, actor: Actor, action: str) -> Ticket:
        if updated is snapshot:
            logger.debug("Ticket %s unchanged; nothing to save", snapshot.id)
            return snapshot
        with tracer.start_as_current_span("tickets.save"):
            saved = await self._store.save(updated, snapshot)
        logger.info(
            "Ticket %s %s by %s (%d history entries)",
            saved.id,
            action,
            actor.id,
            len(saved.history) - len(snapshot.history),
        )
        return saved
