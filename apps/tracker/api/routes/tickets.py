from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from apps.tracker.core.config import Settings, get_settings
from apps.tracker.dependencies.auth import CurrentActor
from apps.tracker.dependencies.services import TicketServiceDep
from apps.tracker.domain.filters import TicketFilter
from apps.tracker.domain.models import (
    Attachment,
    Comment,
    HistoryAction,
    HistoryEntry,
    Ticket,
    TicketPriority,
    TicketStatus,
)
from apps.tracker.services.tickets import TicketPage

router = APIRouter(prefix="/tickets", tags=["tickets"])

SettingsDep = Annotated[Settings, Depends(get_settings)]


class AttachmentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filename: str
    original_name: str = ""
    path: str
    media_type: str = "application/octet-stream"
    size: int = 0
    uploaded_at: datetime | None = None


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    text: str
    author: str
    created_at: datetime
    attachments: list[AttachmentModel]


class HistoryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: HistoryAction
    field: str | None
    old_value: Any
    new_value: Any
    performed_by: str
    timestamp: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    category: str
    priority: TicketPriority
    status: TicketStatus
    submitted_by: str
    assigned_to: str | None
    tags: list[str]
    attachments: list[AttachmentModel]
    resolved_at: datetime | None
    closed_at: datetime | None
    reopened_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime


class TicketDetailResponse(TicketResponse):
    comments: list[CommentResponse]
    history: list[HistoryEntryResponse]


class TicketListResponse(BaseModel):
    items: list[TicketResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TicketCreateRequest(BaseModel):
    title: str
    description: str
    category: str
    priority: str
    status: str | None = None
    tags: list[str] = Field(default_factory=list)
    attachments: list[AttachmentModel] = Field(default_factory=list)


class TicketUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    status: str | None = None
    tags: list[str] | None = None
    assigned_to: str | None = None


class TicketStatusChangeRequest(BaseModel):
    status: str


class TicketAssignRequest(BaseModel):
    assigned_to: str


class CommentCreateRequest(BaseModel):
    text: str
    attachments: list[AttachmentModel] = Field(default_factory=list)


class AttachmentsAddRequest(BaseModel):
    attachments: list[AttachmentModel] = Field(..., min_length=1)


class TicketDeleteResponse(BaseModel):
    id: str
    attachments: list[AttachmentModel]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_detail(ticket: Ticket) -> TicketDetailResponse:
    return TicketDetailResponse.model_validate(ticket)


def _to_list(page: TicketPage) -> TicketListResponse:
    return TicketListResponse(
        items=[_to_response(ticket) for ticket in page.items],
        total=page.total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages,
    )


def _descriptors(attachments: list[AttachmentModel]) -> list[Attachment]:
    return [Attachment(**item.model_dump()) for item in attachments]


@router.post("", response_model=TicketDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketDetailResponse:
    fields: dict[str, Any] = payload.model_dump(exclude={"attachments"}, exclude_none=True)
    fields["attachments"] = _descriptors(payload.attachments)
    ticket = await service.create_ticket(fields, actor)
    return _to_detail(ticket)


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    service: TicketServiceDep,
    actor: CurrentActor,
    settings: SettingsDep,
    status_filter: list[str] | None = Query(default=None, alias="status"),
    priority: list[str] | None = Query(default=None),
    category: list[str] | None = Query(default=None),
    submitted_by: str | None = Query(default=None),
    assigned_to: str | None = Query(default=None),
    created_from: datetime | None = Query(default=None),
    created_to: datetime | None = Query(default=None),
    sort: str | None = Query(default=None),
    page: int = Query(default=1),
    page_size: int | None = Query(default=None),
) -> TicketListResponse:
    ticket_filter = TicketFilter.build(
        created_from=created_from,
        created_to=created_to,
        statuses=status_filter,
        priorities=priority,
        categories=category,
        submitted_by=submitted_by,
        assigned_to=assigned_to,
    )
    result = await service.list_tickets(
        ticket_filter,
        actor,
        sort=sort,
        page=page,
        page_size=settings.default_page_size if page_size is None else page_size,
    )
    return _to_list(result)


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, actor: CurrentActor) -> TicketDetailResponse:
    ticket = await service.get_ticket(ticket_id, actor)
    return _to_detail(ticket)


@router.patch("/{ticket_id}", response_model=TicketDetailResponse)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketDetailResponse:
    ticket = await service.update_ticket(ticket_id, payload.model_dump(exclude_unset=True), actor)
    return _to_detail(ticket)


@router.post("/{ticket_id}/status", response_model=TicketDetailResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketDetailResponse:
    ticket = await service.change_status(ticket_id, payload.status, actor)
    return _to_detail(ticket)


@router.post("/{ticket_id}/assign", response_model=TicketDetailResponse)
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketDetailResponse:
    ticket = await service.assign_ticket(ticket_id, payload.assigned_to, actor)
    return _to_detail(ticket)


@router.get("/{ticket_id}/comments", response_model=list[CommentResponse])
async def get_ticket_comments(
    ticket_id: str, service: TicketServiceDep, actor: CurrentActor
) -> list[CommentResponse]:
    comments: list[Comment] = list(await service.get_comments(ticket_id, actor))
    return [CommentResponse.model_validate(comment) for comment in comments]


@router.post("/{ticket_id}/comments", response_model=TicketDetailResponse, status_code=status.HTTP_201_CREATED)
async def add_ticket_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketDetailResponse:
    ticket = await service.add_comment(
        ticket_id, payload.text, actor, attachments=_descriptors(payload.attachments)
    )
    return _to_detail(ticket)


@router.post("/{ticket_id}/attachments", response_model=TicketDetailResponse)
async def add_ticket_attachments(
    ticket_id: str,
    payload: AttachmentsAddRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketDetailResponse:
    ticket = await service.add_attachments(ticket_id, _descriptors(payload.attachments), actor)
    return _to_detail(ticket)


@router.get("/{ticket_id}/history", response_model=list[HistoryEntryResponse])
async def get_ticket_history(
    ticket_id: str, service: TicketServiceDep, actor: CurrentActor
) -> list[HistoryEntryResponse]:
    entries: list[HistoryEntry] = list(await service.get_history(ticket_id, actor))
    return [HistoryEntryResponse.model_validate(entry) for entry in entries]


@router.delete("/{ticket_id}", response_model=TicketDeleteResponse)
async def delete_ticket(ticket_id: str, service: TicketServiceDep, actor: CurrentActor) -> TicketDeleteResponse:
    files = await service.delete_ticket(ticket_id, actor)
    return TicketDeleteResponse(
        id=ticket_id,
        attachments=[AttachmentModel.model_validate(item) for item in files],
    )
