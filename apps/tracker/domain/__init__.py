"""Shared ticket types, errors and lifecycle definitions."""

from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    TrackerError,
    ValidationError,
)
from .filters import Page, TicketFilter, TicketSort
from .models import (
    Actor,
    Attachment,
    Category,
    Comment,
    HistoryAction,
    HistoryEntry,
    Role,
    Ticket,
    TicketPriority,
    TicketStatus,
)
from .state import TRACKED_FIELDS, TicketStateMachine, classify_change

__all__ = [
    "Actor",
    "Attachment",
    "AuthorizationError",
    "Category",
    "Comment",
    "ConflictError",
    "HistoryAction",
    "HistoryEntry",
    "NotFoundError",
    "Page",
    "PersistenceError",
    "Role",
    "TRACKED_FIELDS",
    "Ticket",
    "TicketFilter",
    "TicketPriority",
    "TicketSort",
    "TicketStateMachine",
    "TicketStatus",
    "TrackerError",
    "ValidationError",
    "classify_change",
]
