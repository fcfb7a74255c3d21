"""Role and ownership rules gating ticket and category mutations."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from apps.tracker.domain.errors import AuthorizationError
from apps.tracker.domain.models import Role, TicketStatus
from apps.tracker.domain.state import TRACKED_FIELDS

logger = logging.getLogger(__name__)

STAFF_ROLES: frozenset[Role] = frozenset(role for role in Role if role.is_staff)

# Fields an owning client may edit on their own ticket.
CLIENT_EDITABLE_FIELDS: frozenset[str] = frozenset(
    {"title", "description", "category", "priority", "tags", "status"}
)

# Statuses an owning client may set directly.
CLIENT_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.CLOSED, TicketStatus.REOPENED})

_FIELD_RULES: Mapping[Role, frozenset[str]] = {
    **{role: frozenset(TRACKED_FIELDS) for role in STAFF_ROLES},
    Role.CLIENT: CLIENT_EDITABLE_FIELDS,
}

_STATUS_RULES: Mapping[Role, frozenset[TicketStatus]] = {
    **{role: frozenset(TicketStatus) for role in STAFF_ROLES},
    Role.CLIENT: CLIENT_STATUSES,
}


class AuthorizationPolicy:
    """Pure decision table over role x action; performs no I/O.

    Clients only act on tickets they submitted; staff roles act on any ticket.
    Ownership is decided by the caller and passed in as ``is_owner``.
    """

    @staticmethod
    def _requires_ownership(role: Role) -> bool:
        return role is Role.CLIENT

    def can_view_ticket(self, role: Role, is_owner: bool) -> bool:
        return is_owner or not self._requires_ownership(role)

    def can_mutate_field(self, role: Role, is_owner: bool, field: str) -> bool:
        if self._requires_ownership(role) and not is_owner:
            return False
        return field in _FIELD_RULES.get(role, frozenset())

    def can_set_status(self, role: Role, is_owner: bool, target_status: TicketStatus) -> bool:
        if not self.can_mutate_field(role, is_owner, "status"):
            return False
        return target_status in _STATUS_RULES.get(role, frozenset())

    def can_comment(self, role: Role, is_owner: bool) -> bool:
        return self.can_view_ticket(role, is_owner)

    def can_attach(self, role: Role, is_owner: bool) -> bool:
        return self.can_view_ticket(role, is_owner)

    def can_delete_ticket(self, role: Role) -> bool:
        return role is Role.ADMIN

    def can_manage_categories(self, role: Role) -> bool:
        return role is Role.ADMIN

    def ensure_can_view(self, role: Role, is_owner: bool) -> None:
        if not self.can_view_ticket(role, is_owner):
            self._deny("view", f"Role '{role.value}' may only access its own tickets")

    def ensure_can_comment(self, role: Role, is_owner: bool) -> None:
        if not self.can_comment(role, is_owner):
            self._deny("comment", f"Role '{role.value}' may only comment on its own tickets")

    def ensure_can_attach(self, role: Role, is_owner: bool) -> None:
        if not self.can_attach(role, is_owner):
            self._deny("attach", f"Role '{role.value}' may only add attachments to its own tickets")

    def ensure_can_mutate_fields(self, role: Role, is_owner: bool, fields: Iterable[str]) -> None:
        for field in fields:
            if not self.can_mutate_field(role, is_owner, field):
                self._deny("update", f"Role '{role.value}' may not change '{field}'", field=field)

    def ensure_can_set_status(self, role: Role, is_owner: bool, target_status: TicketStatus) -> None:
        if not self.can_set_status(role, is_owner, target_status):
            self._deny(
                "change_status",
                f"Role '{role.value}' may not set status to '{target_status.value}'",
                field="status",
            )

    def ensure_can_delete(self, role: Role) -> None:
        if not self.can_delete_ticket(role):
            self._deny("delete", "Only administrators may delete tickets")

    def ensure_can_manage_categories(self, role: Role) -> None:
        if not self.can_manage_categories(role):
            self._deny("manage_categories", "Only administrators may manage categories")

    @staticmethod
    def _deny(action: str, message: str, *, field: str | None = None) -> None:
        logger.warning("Authorization denied for %s: %s", action, message)
        raise AuthorizationError(message, action=action, field=field)
