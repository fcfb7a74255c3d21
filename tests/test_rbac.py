import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from apps.tracker.dependencies.auth import User, resolve_user_from_token, role_required
from apps.tracker.domain.models import Actor, Role
from apps.tracker.main import create_app


@pytest.mark.asyncio
async def test_role_required_allows_authorized_user():
    dependency = role_required(Role.ADMIN, Role.MANAGER)
    user = User("alice", Role.MANAGER)
    result = await dependency(user)  # type: ignore[arg-type]
    assert result.username == "alice"


@pytest.mark.asyncio
async def test_role_required_rejects_unauthorized_user():
    dependency = role_required(Role.ADMIN)
    user = User("bob", Role.CLIENT)
    with pytest.raises(HTTPException) as exc:
        await dependency(user)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.detail == "Insufficient permissions"


def test_resolve_user_from_token():
    user = resolve_user_from_token("qa-token")
    assert user.as_actor() == Actor(id="qa", role=Role.QA)

    with pytest.raises(HTTPException) as exc:
        resolve_user_from_token("forged")
    assert exc.value.status_code == 401

    with pytest.raises(HTTPException):
        resolve_user_from_token(None)


@pytest.fixture
def client():
    return TestClient(create_app())


def test_public_ping_needs_no_token(client):
    assert client.get("/ping").json() == {"status": "ok"}


def test_secure_ping_allows_staff(client):
    response = client.get("/ping/secure", headers={"Authorization": "Bearer developer-token"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "user": "developer", "role": "developer"}


def test_secure_ping_rejects_clients(client):
    response = client.get("/ping/secure", headers={"Authorization": "Bearer client-token"})

    assert response.status_code == 403


def test_middleware_rejects_invalid_tokens(client):
    response = client.get("/ping", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401

    response = client.get("/ping", headers={"Authorization": "Basic abc"})
    assert response.status_code == 401
