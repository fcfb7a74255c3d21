from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from apps.tracker.dependencies import services as service_deps
from apps.tracker.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from apps.tracker.domain.models import (
    Actor,
    Attachment,
    HistoryAction,
    HistoryEntry,
    Role,
    Ticket,
    TicketPriority,
    TicketStatus,
)
from apps.tracker.main import create_app
from apps.tracker.services.tickets import TicketPage

SUPPORT_HEADERS = {"Authorization": "Bearer support-token"}
CLIENT_HEADERS = {"Authorization": "Bearer client-token"}


def _make_ticket(*, status: TicketStatus = TicketStatus.NEW) -> Ticket:
    now = datetime.now(timezone.utc)
    return Ticket(
        id="ticket-1",
        title="Login page broken",
        description="The login form returns a blank page",
        category="cat-bug",
        priority=TicketPriority.HIGH,
        status=status,
        submitted_by="client",
        created_at=now,
        updated_at=now,
        tags=("login",),
        history=(HistoryEntry(action=HistoryAction.CREATED, performed_by="client", timestamp=now),),
    )


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[service_deps.get_ticket_service] = override_service

    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def test_create_ticket_endpoint_returns_created(ticket_client):
    client, service = ticket_client
    ticket = _make_ticket()
    service.create_ticket = AsyncMock(return_value=ticket)

    response = client.post(
        "/tickets",
        json={
            "title": ticket.title,
            "description": ticket.description,
            "category": "cat-bug",
            "priority": "high",
            "tags": ["login"],
        },
        headers=CLIENT_HEADERS,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == "ticket-1"
    assert body["history"][0]["action"] == "created"
    fields, actor = service.create_ticket.await_args.args
    assert fields["tags"] == ["login"]
    assert fields["attachments"] == []
    assert "status" not in fields
    assert actor == Actor(id="client", role=Role.CLIENT)


def test_list_tickets_passes_filters_and_paging(ticket_client):
    client, service = ticket_client
    ticket = _make_ticket(status=TicketStatus.RESOLVED)
    service.list_tickets = AsyncMock(
        return_value=TicketPage(items=[ticket], total=1, page=1, page_size=10)
    )

    response = client.get(
        "/tickets",
        params={"status": "resolved", "sort": "-priority"},
        headers=SUPPORT_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["total_pages"] == 1
    assert body["items"][0]["status"] == "resolved"
    ticket_filter, actor = service.list_tickets.await_args.args
    assert ticket_filter.statuses == frozenset({TicketStatus.RESOLVED})
    assert actor.role is Role.SUPPORT
    assert service.list_tickets.await_args.kwargs == {"sort": "-priority", "page": 1, "page_size": 10}


def test_update_ticket_forwards_only_sent_fields(ticket_client):
    client, service = ticket_client
    service.update_ticket = AsyncMock(return_value=_make_ticket())

    response = client.patch("/tickets/ticket-1", json={"priority": "low"}, headers=SUPPORT_HEADERS)

    assert response.status_code == 200
    ticket_id, fields, _ = service.update_ticket.await_args.args
    assert ticket_id == "ticket-1"
    assert fields == {"priority": "low"}


@pytest.mark.parametrize(
    ("error", "status_code", "error_kind"),
    [
        (ValidationError("Title must be between 5 and 100 characters", field="title"), 422, "validation_error"),
        (NotFoundError("ticket", "ticket-1"), 404, "not_found"),
        (AuthorizationError("nope", action="change_status", field="status"), 403, "authorization_error"),
        (ConflictError("modified concurrently", entity="ticket", entity_id="ticket-1"), 409, "conflict"),
        (PersistenceError("Failed to save ticket"), 503, "persistence_error"),
    ],
)
def test_errors_map_to_status_codes(ticket_client, error, status_code, error_kind):
    client, service = ticket_client
    service.change_status = AsyncMock(side_effect=error)

    response = client.post("/tickets/ticket-1/status", json={"status": "resolved"}, headers=SUPPORT_HEADERS)

    assert response.status_code == status_code
    body = response.json()
    assert body["error"] == error_kind
    assert body["detail"] == error.message


def test_validation_error_body_names_field(ticket_client):
    client, service = ticket_client
    service.update_ticket = AsyncMock(side_effect=ValidationError("Bad title", field="title"))

    response = client.patch("/tickets/ticket-1", json={"title": "x"}, headers=SUPPORT_HEADERS)

    assert response.json() == {"error": "validation_error", "detail": "Bad title", "field": "title"}


def test_history_endpoint_returns_entries(ticket_client):
    client, service = ticket_client
    service.get_history = AsyncMock(return_value=list(_make_ticket().history))

    response = client.get("/tickets/ticket-1/history", headers=CLIENT_HEADERS)

    assert response.status_code == 200
    assert response.json()[0]["action"] == "created"
    assert response.json()[0]["performed_by"] == "client"


def test_delete_returns_attachments_to_clean_up(ticket_client):
    client, service = ticket_client
    files = [Attachment(filename="shot.png", path="/uploads/shot.png", media_type="image/png", size=10)]
    service.delete_ticket = AsyncMock(return_value=files)

    response = client.delete("/tickets/ticket-1", headers={"Authorization": "Bearer admin-token"})

    assert response.status_code == 200
    assert response.json()["attachments"][0]["path"] == "/uploads/shot.png"


def test_requests_without_token_are_rejected(ticket_client):
    client, _ = ticket_client

    response = client.get("/tickets")

    assert response.status_code == 401


def test_missing_service_returns_unavailable():
    client = TestClient(create_app())

    response = client.get("/tickets", headers=SUPPORT_HEADERS)

    assert response.status_code == 503


def test_list_tickets_forwards_explicit_zero_page_size(ticket_client):
    client, service = ticket_client
    service.list_tickets = AsyncMock(side_effect=ValidationError("page_size must be between 1 and 100", field="page_size"))

    response = client.get("/tickets", params={"page_size": 0}, headers=SUPPORT_HEADERS)

    assert response.status_code == 422
    assert response.json()["field"] == "page_size"
    assert service.list_tickets.await_args.kwargs["page_size"] == 0
