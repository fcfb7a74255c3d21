from __future__ import annotations

from typing import Mapping, Sequence

from .errors import ValidationError
from .models import HistoryAction, TicketStatus

# Fields whose changes are recorded in a ticket's history.
TRACKED_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "category",
    "priority",
    "status",
    "tags",
    "assigned_to",
)

# Derived timestamp set whenever status moves into the given value.
STATUS_TIMESTAMP_FIELDS: Mapping[TicketStatus, str] = {
    TicketStatus.RESOLVED: "resolved_at",
    TicketStatus.CLOSED: "closed_at",
    TicketStatus.REOPENED: "reopened_at",
}


def classify_change(field: str) -> HistoryAction:
    """Return the history action recorded for a change of ``field``."""

    if field == "status":
        return HistoryAction.STATUS_CHANGED
    if field == "assigned_to":
        return HistoryAction.ASSIGNED
    return HistoryAction.UPDATED


class TicketStateMachine:
    """Validate ticket status transitions.

    The default graph is fully connected: any status may follow any other and
    legality is decided by the authorization policy. A narrower graph can be
    injected where a deployment wants one.
    """

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        status: tuple(TicketStatus) for status in TicketStatus
    }

    def __init__(self, transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.NEW

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        if current == target:
            return True
        return target in self._transitions.get(current, ())

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise ValidationError(
                f"Invalid status transition: {current.value} -> {target.value}", field="status"
            )

    @staticmethod
    def timestamp_field(target: TicketStatus) -> str | None:
        return STATUS_TIMESTAMP_FIELDS.get(target)
