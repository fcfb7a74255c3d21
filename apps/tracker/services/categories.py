from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol

from apps.tracker.domain.errors import ConflictError, ValidationError
from apps.tracker.domain.models import Actor, Category
from apps.tracker.policy.authorization import AuthorizationPolicy

from .store import CategoryStore

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 200

_EDITABLE_FIELDS = frozenset({"name", "description", "is_active"})


class CategoryUsage(Protocol):
    async def count_by_category(self, category_id: str) -> int:
        ...


@dataclass(frozen=True, slots=True)
class CategoryDetails:
    category: Category
    ticket_count: int


def _clean_name(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError("Category name is required", field="name")
    name = value.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(
            f"Category name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters", field="name"
        )
    return name


def _clean_description(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Description must be a string", field="description")
    description = value.strip()
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters", field="description"
        )
    return description


class CategoryService:
    """Admin-managed categories; in-use categories are deactivated, not deleted."""

    def __init__(
        self,
        store: CategoryStore,
        usage: CategoryUsage,
        *,
        policy: AuthorizationPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._usage = usage
        self._policy = policy or AuthorizationPolicy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    async def list_categories(self, *, active: bool | None = None) -> list[Category]:
        return await self._store.list(active=active)

    async def get_category(self, category_id: str) -> CategoryDetails:
        category = await self._store.load(category_id)
        count = await self._usage.count_by_category(category_id)
        return CategoryDetails(category=category, ticket_count=count)

    async def create_category(self, fields: Mapping[str, Any], actor: Actor) -> Category:
        self._policy.ensure_can_manage_categories(actor.role)
        self._reject_unknown(fields)
        now = self._clock()
        category = Category(
            id=self._id_factory(),
            name=_clean_name(fields.get("name")),
            description=_clean_description(fields.get("description")),
            is_active=self._clean_active(fields.get("is_active", True)),
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        created = await self._store.insert(category)
        logger.info("Category %s (%s) created by %s", created.id, created.name, actor.id)
        return created

    async def update_category(self, category_id: str, fields: Mapping[str, Any], actor: Actor) -> Category:
        self._policy.ensure_can_manage_categories(actor.role)
        self._reject_unknown(fields)
        current = await self._store.load(category_id)
        changes: dict[str, Any] = {}
        if "name" in fields:
            changes["name"] = _clean_name(fields["name"])
        if "description" in fields:
            changes["description"] = _clean_description(fields["description"])
        if "is_active" in fields:
            changes["is_active"] = self._clean_active(fields["is_active"])
        updated = await self._store.save(replace(current, **changes))
        logger.info("Category %s updated by %s", category_id, actor.id)
        return updated

    async def toggle_category_status(self, category_id: str, actor: Actor) -> Category:
        self._policy.ensure_can_manage_categories(actor.role)
        current = await self._store.load(category_id)
        updated = await self._store.save(replace(current, is_active=not current.is_active))
        logger.info("Category %s is_active=%s (by %s)", category_id, updated.is_active, actor.id)
        return updated

    async def delete_category(self, category_id: str, actor: Actor) -> None:
        self._policy.ensure_can_manage_categories(actor.role)
        await self._store.load(category_id)
        in_use = await self._usage.count_by_category(category_id)
        if in_use:
            raise ConflictError(
                f"Cannot delete category as it's associated with {in_use} tickets. "
                "Consider deactivating it instead.",
                entity="category",
                entity_id=category_id,
            )
        await self._store.delete(category_id)
        logger.info("Category %s deleted by %s", category_id, actor.id)

    @staticmethod
    def _reject_unknown(fields: Mapping[str, Any]) -> None:
        unknown = sorted(set(fields) - _EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Field '{unknown[0]}' cannot be set on a category", field=unknown[0])

    @staticmethod
    def _clean_active(value: Any) -> bool:
        if not isinstance(value, bool):
            raise ValidationError("is_active must be a boolean", field="is_active")
        return value
