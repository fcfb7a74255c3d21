"""Database models and utilities."""

from .models import (
    CategoryTable,
    TicketCommentTable,
    TicketHistoryTable,
    TicketTable,
)

__all__ = [
    "CategoryTable",
    "TicketCommentTable",
    "TicketHistoryTable",
    "TicketTable",
]
