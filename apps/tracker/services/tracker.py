"""Turn proposed field changes into new ticket state plus audit entries.

Every operation takes the caller's snapshot and returns a new :class:`Ticket`;
the snapshot itself is never modified, so it can be handed back to the store
as the expected prior state. Validation runs over all proposed values before
any history is computed, so a rejected call produces no entries.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Protocol

from apps.tracker.domain.errors import ValidationError
from apps.tracker.domain.models import (
    Actor,
    Attachment,
    Category,
    Comment,
    HistoryAction,
    HistoryEntry,
    Ticket,
    TicketPriority,
    TicketStatus,
)
from apps.tracker.domain.state import TRACKED_FIELDS, TicketStateMachine, classify_change

TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 100
DESCRIPTION_MIN_LENGTH = 10
# Matches the width of tickets.assigned_to.
ASSIGNEE_MAX_LENGTH = 255

_CREATE_FIELDS = frozenset({"title", "description", "category", "priority", "status", "tags", "attachments"})
_REQUIRED_CREATE_FIELDS = ("title", "description", "category", "priority")


class CategoryDirectory(Protocol):
    async def resolve(self, category_id: str) -> Category | None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _history_value(field: str, value: Any) -> Any:
    if value is None:
        return None
    if field == "tags":
        return sorted(value)
    if isinstance(value, (TicketStatus, TicketPriority)):
        return value.value
    return value


def _same(field: str, old: Any, new: Any) -> bool:
    if field == "tags":
        return set(old) == set(new)
    return old == new


class MutationTracker:
    """Apply create/update/comment/assignment intents to ticket snapshots."""

    def __init__(
        self,
        categories: CategoryDirectory,
        *,
        state_machine: TicketStateMachine | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._categories = categories
        self._state_machine = state_machine or TicketStateMachine()
        self._clock = clock or _utcnow
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    async def apply_create(self, fields: Mapping[str, Any], submitter: Actor) -> Ticket:
        unknown = sorted(set(fields) - _CREATE_FIELDS)
        if unknown:
            raise ValidationError(f"Field '{unknown[0]}' cannot be set on creation", field=unknown[0])
        for name in _REQUIRED_CREATE_FIELDS:
            if fields.get(name) in (None, ""):
                raise ValidationError(f"{name.capitalize()} is required", field=name)

        status = self._clean_status(fields.get("status") or self._state_machine.initial_state())
        title = self._clean_title(fields["title"])
        description = self._clean_description(fields["description"])
        priority = self._clean_priority(fields["priority"])
        tags = self._clean_tags(fields.get("tags") or ())
        attachments = self._clean_attachments(fields.get("attachments") or ())
        category = await self._resolve_category(fields["category"])

        now = self._clock()
        ticket = Ticket(
            id=self._id_factory(),
            title=title,
            description=description,
            category=category.id,
            priority=priority,
            status=status,
            submitted_by=submitter.id,
            created_at=now,
            updated_at=now,
            tags=tags,
            attachments=attachments,
            history=(
                HistoryEntry(action=HistoryAction.CREATED, performed_by=submitter.id, timestamp=now),
            ),
        )
        timestamp_field = self._state_machine.timestamp_field(status)
        if timestamp_field is not None:
            ticket = replace(ticket, **{timestamp_field: now})
        return ticket

    async def apply_update(self, snapshot: Ticket, proposed: Mapping[str, Any], actor: Actor) -> Ticket:
        cleaned = await self._clean_update(snapshot, proposed)
        changed = [
            field
            for field in TRACKED_FIELDS
            if field in cleaned and not _same(field, getattr(snapshot, field), cleaned[field])
        ]
        if not changed:
            return snapshot

        now = self._clock()
        updates: dict[str, Any] = {}
        entries: list[HistoryEntry] = []
        for field in changed:
            new_value = cleaned[field]
            entries.append(
                HistoryEntry(
                    action=classify_change(field),
                    field=field,
                    old_value=_history_value(field, getattr(snapshot, field)),
                    new_value=_history_value(field, new_value),
                    performed_by=actor.id,
                    timestamp=now,
                )
            )
            updates[field] = new_value
            if field == "status":
                timestamp_field = self._state_machine.timestamp_field(new_value)
                if timestamp_field is not None:
                    updates[timestamp_field] = now

        return replace(snapshot, **updates, history=(*snapshot.history, *entries))

    async def apply_comment(
        self,
        snapshot: Ticket,
        text: str,
        attachments: Iterable[Attachment | Mapping[str, Any]],
        actor: Actor,
    ) -> Ticket:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Comment text is required", field="text")
        cleaned = text.strip()
        files = self._clean_attachments(attachments)

        now = self._clock()
        comment = Comment(
            id=self._id_factory(),
            text=cleaned,
            author=actor.id,
            created_at=now,
            attachments=files,
        )
        entry = HistoryEntry(action=HistoryAction.COMMENTED, performed_by=actor.id, timestamp=now)
        return replace(
            snapshot,
            comments=(*snapshot.comments, comment),
            history=(*snapshot.history, entry),
        )

    async def apply_assignment(self, snapshot: Ticket, assignee_id: str, actor: Actor) -> Ticket:
        assignee = self._clean_assignee(assignee_id)
        if assignee is None:
            raise ValidationError("Please provide a user id to assign", field="assigned_to")

        now = self._clock()
        updates: dict[str, Any] = {}
        entries: list[HistoryEntry] = []
        if assignee != snapshot.assigned_to:
            updates["assigned_to"] = assignee
            entries.append(
                HistoryEntry(
                    action=HistoryAction.ASSIGNED,
                    field="assigned_to",
                    old_value=snapshot.assigned_to,
                    new_value=assignee,
                    performed_by=actor.id,
                    timestamp=now,
                )
            )
        if snapshot.status is TicketStatus.NEW:
            self._state_machine.assert_transition(snapshot.status, TicketStatus.IN_PROGRESS)
            updates["status"] = TicketStatus.IN_PROGRESS
            entries.append(
                HistoryEntry(
                    action=HistoryAction.STATUS_CHANGED,
                    field="status",
                    old_value=snapshot.status.value,
                    new_value=TicketStatus.IN_PROGRESS.value,
                    performed_by=actor.id,
                    timestamp=now,
                )
            )
        if not entries:
            return snapshot
        return replace(snapshot, **updates, history=(*snapshot.history, *entries))

    async def apply_attachments(
        self,
        snapshot: Ticket,
        attachments: Iterable[Attachment | Mapping[str, Any]],
        actor: Actor,
    ) -> Ticket:
        files = self._clean_attachments(attachments)
        if not files:
            raise ValidationError("No attachments provided", field="attachments")

        now = self._clock()
        combined = (*snapshot.attachments, *files)
        entry = HistoryEntry(
            action=HistoryAction.UPDATED,
            field="attachments",
            old_value=len(snapshot.attachments),
            new_value=len(combined),
            performed_by=actor.id,
            timestamp=now,
        )
        return replace(snapshot, attachments=combined, history=(*snapshot.history, entry))

    async def _clean_update(self, snapshot: Ticket, proposed: Mapping[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(proposed) - set(TRACKED_FIELDS))
        if unknown:
            raise ValidationError(f"Field '{unknown[0]}' cannot be updated", field=unknown[0])

        cleaned: dict[str, Any] = {}
        for field, value in proposed.items():
            if field == "title":
                cleaned[field] = self._clean_title(value)
            elif field == "description":
                cleaned[field] = self._clean_description(value)
            elif field == "priority":
                cleaned[field] = self._clean_priority(value)
            elif field == "status":
                status = self._clean_status(value)
                self._state_machine.assert_transition(snapshot.status, status)
                cleaned[field] = status
            elif field == "tags":
                cleaned[field] = self._clean_tags(value)
            elif field == "assigned_to":
                cleaned[field] = self._clean_assignee(value)
            elif field == "category":
                category_id = self._clean_reference(value, field="category")
                if category_id != snapshot.category:
                    category_id = (await self._resolve_category(category_id)).id
                cleaned[field] = category_id
        return cleaned

    async def _resolve_category(self, value: Any) -> Category:
        category_id = self._clean_reference(value, field="category")
        category = await self._categories.resolve(category_id)
        if category is None:
            raise ValidationError(f"Category {category_id} does not exist", field="category")
        if not category.is_active:
            raise ValidationError(f"Category '{category.name}' is not active", field="category")
        return category

    @staticmethod
    def _clean_title(value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError("Title must be a string", field="title")
        title = value.strip()
        if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
            raise ValidationError(
                f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters", field="title"
            )
        return title

    @staticmethod
    def _clean_description(value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError("Description must be a string", field="description")
        description = value.strip()
        if len(description) < DESCRIPTION_MIN_LENGTH:
            raise ValidationError(
                f"Description must be at least {DESCRIPTION_MIN_LENGTH} characters", field="description"
            )
        return description

    @staticmethod
    def _clean_priority(value: Any) -> TicketPriority:
        try:
            return TicketPriority(value)
        except ValueError as exc:
            raise ValidationError(
                "Priority must be low, medium, high, or critical", field="priority"
            ) from exc

    @staticmethod
    def _clean_status(value: Any) -> TicketStatus:
        try:
            return TicketStatus(value)
        except ValueError as exc:
            raise ValidationError(
                "Status must be new, in-progress, resolved, closed, or reopened", field="status"
            ) from exc

    @staticmethod
    def _clean_tags(value: Any) -> tuple[str, ...]:
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValidationError("Tags must be an array", field="tags")
        tags: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValidationError("Tags must be strings", field="tags")
            tag = item.strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tuple(tags)

    @staticmethod
    def _clean_assignee(value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Assignee must be a user id", field="assigned_to")
        assignee = value.strip()
        if len(assignee) > ASSIGNEE_MAX_LENGTH:
            raise ValidationError(
                f"Assignee id cannot exceed {ASSIGNEE_MAX_LENGTH} characters", field="assigned_to"
            )
        return assignee

    @staticmethod
    def _clean_reference(value: Any, *, field: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field.capitalize()} is required", field=field)
        return value.strip()

    @staticmethod
    def _clean_attachments(values: Iterable[Attachment | Mapping[str, Any]]) -> tuple[Attachment, ...]:
        files: list[Attachment] = []
        for value in values:
            if isinstance(value, Attachment):
                files.append(value)
                continue
            try:
                files.append(Attachment.from_dict(value))
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError("Invalid attachment descriptor", field="attachments") from exc
        return tuple(files)
