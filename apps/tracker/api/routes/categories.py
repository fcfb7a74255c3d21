from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict

from apps.tracker.dependencies.auth import CurrentActor, CurrentUser
from apps.tracker.dependencies.services import CategoryServiceDep

router = APIRouter(prefix="/categories", tags=["categories"])


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    is_active: bool
    created_by: str
    created_at: datetime
    updated_at: datetime


class CategoryDetailResponse(BaseModel):
    category: CategoryResponse
    ticket_count: int


class CategoryCreateRequest(BaseModel):
    name: str
    description: str | None = None
    is_active: bool = True


class CategoryUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None


@router.get("", response_model=list[CategoryResponse])
async def list_categories(
    service: CategoryServiceDep,
    _: CurrentUser,
    active: bool | None = Query(default=None),
) -> list[CategoryResponse]:
    categories = await service.list_categories(active=active)
    return [CategoryResponse.model_validate(item) for item in categories]


@router.get("/{category_id}", response_model=CategoryDetailResponse)
async def get_category(category_id: str, service: CategoryServiceDep, _: CurrentUser) -> CategoryDetailResponse:
    details = await service.get_category(category_id)
    return CategoryDetailResponse(
        category=CategoryResponse.model_validate(details.category),
        ticket_count=details.ticket_count,
    )


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreateRequest,
    service: CategoryServiceDep,
    actor: CurrentActor,
) -> CategoryResponse:
    category = await service.create_category(payload.model_dump(exclude_none=True), actor)
    return CategoryResponse.model_validate(category)


@router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str,
    payload: CategoryUpdateRequest,
    service: CategoryServiceDep,
    actor: CurrentActor,
) -> CategoryResponse:
    category = await service.update_category(category_id, payload.model_dump(exclude_none=True), actor)
    return CategoryResponse.model_validate(category)


@router.patch("/{category_id}/toggle-status", response_model=CategoryResponse)
async def toggle_category_status(
    category_id: str, service: CategoryServiceDep, actor: CurrentActor
) -> CategoryResponse:
    category = await service.toggle_category_status(category_id, actor)
    return CategoryResponse.model_validate(category)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(category_id: str, service: CategoryServiceDep, actor: CurrentActor) -> None:
    await service.delete_category(category_id, actor)
