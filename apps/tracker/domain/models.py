from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class TicketStatus(str, Enum):
    """Canonical states of the ticket lifecycle."""

    NEW = "new"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"


class TicketPriority(str, Enum):
    """Urgency levels, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HistoryAction(str, Enum):
    """Kinds of audit entries recorded on a ticket."""

    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status-changed"
    ASSIGNED = "assigned"
    COMMENTED = "commented"
    RESOLVED = "resolved"
    REOPENED = "reopened"


class Role(str, Enum):
    """Roles known to the authorization policy."""

    ADMIN = "admin"
    MANAGER = "manager"
    SUPPORT = "support"
    DEVELOPER = "developer"
    QA = "qa"
    CLIENT = "client"

    @property
    def is_staff(self) -> bool:
        return self is not Role.CLIENT


@dataclass(frozen=True, slots=True)
class Actor:
    """Verified identity performing an operation."""

    id: str
    role: Role

    def owns(self, ticket: "Ticket") -> bool:
        return self.id == ticket.submitted_by


@dataclass(frozen=True, slots=True)
class Attachment:
    """Descriptor of a file persisted by the file store."""

    filename: str
    path: str
    media_type: str
    size: int
    original_name: str = ""
    uploaded_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "original_name": self.original_name,
            "path": self.path,
            "media_type": self.media_type,
            "size": self.size,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Attachment":
        uploaded_at = data.get("uploaded_at")
        if isinstance(uploaded_at, str):
            uploaded_at = datetime.fromisoformat(uploaded_at)
        return cls(
            filename=str(data["filename"]),
            original_name=str(data.get("original_name") or ""),
            path=str(data["path"]),
            media_type=str(data.get("media_type") or "application/octet-stream"),
            size=int(data.get("size") or 0),
            uploaded_at=uploaded_at,
        )


@dataclass(frozen=True, slots=True)
class Comment:
    """Individual comment posted on a ticket."""

    id: str
    text: str
    author: str
    created_at: datetime
    attachments: tuple[Attachment, ...] = ()


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Immutable audit record for a single change or notable action."""

    action: HistoryAction
    performed_by: str
    timestamp: datetime
    field: str | None = None
    old_value: Any = None
    new_value: Any = None


@dataclass(frozen=True, slots=True)
class Category:
    """Grouping a ticket is filed under."""

    id: str
    name: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class Ticket:
    """Feedback item together with its comments and audit trail."""

    id: str
    title: str
    description: str
    category: str
    priority: TicketPriority
    status: TicketStatus
    submitted_by: str
    created_at: datetime
    updated_at: datetime
    assigned_to: str | None = None
    tags: tuple[str, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    reopened_at: datetime | None = None
    comments: tuple[Comment, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    version: int = 1

    @property
    def response_time(self) -> float | None:
        """Seconds between creation and the first comment."""

        if not self.comments:
            return None
        return (self.comments[0].created_at - self.created_at).total_seconds()

    @property
    def resolution_time(self) -> float | None:
        """Seconds between creation and the latest resolution."""

        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.created_at).total_seconds()
