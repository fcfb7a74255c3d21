"""Authorization policy for ticket lifecycle actions."""

from .authorization import CLIENT_EDITABLE_FIELDS, CLIENT_STATUSES, STAFF_ROLES, AuthorizationPolicy

__all__ = [
    "AuthorizationPolicy",
    "CLIENT_EDITABLE_FIELDS",
    "CLIENT_STATUSES",
    "STAFF_ROLES",
]
