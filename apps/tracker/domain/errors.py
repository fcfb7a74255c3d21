"""Error taxonomy shared by the ticket lifecycle core."""

from __future__ import annotations

from typing import Any


class TrackerError(RuntimeError):
    """Base error for feedback tracker operations."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.message}


class ValidationError(TrackerError):
    """Raised when a field violates its constraints."""

    kind = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.field is not None:
            payload["field"] = self.field
        return payload


class NotFoundError(TrackerError):
    """Raised when an entity id does not resolve."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity.capitalize()} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update({"entity": self.entity, "id": self.entity_id})
        return payload


class AuthorizationError(TrackerError):
    """Raised when the role/ownership policy denies an action."""

    kind = "authorization_error"

    def __init__(self, message: str, *, action: str, field: str | None = None) -> None:
        super().__init__(message)
        self.action = action
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["action"] = self.action
        if self.field is not None:
            payload["field"] = self.field
        return payload


class ConflictError(TrackerError):
    """Raised on unique-constraint violations or concurrent writes."""

    kind = "conflict"

    def __init__(self, message: str, *, entity: str, entity_id: str | None = None) -> None:
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["entity"] = self.entity
        if self.entity_id is not None:
            payload["id"] = self.entity_id
        return payload


class PersistenceError(TrackerError):
    """Raised when the store fails; never retried by the core."""

    kind = "persistence_error"
