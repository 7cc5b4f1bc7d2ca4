import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from timegate.core.auth.security import create_access_token
from timegate.dependencies import get_db
from timegate.main import create_app


@pytest.fixture
async def client(db):
    app = create_app()

    async def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def auth(principal):
    return {"Authorization": f"Bearer {create_access_token(principal.id)}"}


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


async def test_missing_token(client, project):
    r = await client.get(f"/projects/{project.id}")
    assert r.status_code == 401


async def test_token_for_unknown_user(client):
    r = await client.get("/users/me", headers={"Authorization": f"Bearer {create_access_token(uuid.uuid4())}"})
    assert r.status_code == 401


async def test_me(client, owner):
    r = await client.get("/users/me", headers=auth(owner))
    assert r.status_code == 200
    assert r.json()["email"] == "owner@timegate.io"


async def test_unauthorized_maps_to_403(client, project, make_user):
    stranger = await make_user("stranger@timegate.io")
    r = await client.get(f"/projects/{project.id}", headers=auth(stranger))
    assert r.status_code == 403
    assert r.json()["error"] == "UNAUTHORIZED"


async def test_policy_error_maps_to_422(client, owner, project):
    r = await client.post(f"/projects/{project.id}/time-sheets", json={"title": "Empty"}, headers=auth(owner))
    assert r.status_code == 201
    sheet_id = r.json()["id"]

    r = await client.post(f"/time-sheets/{sheet_id}/submit", headers=auth(owner))
    assert r.status_code == 422
    assert r.json() == {"error": "POLICY_NOT_SATISFIED", "detail": "Cannot submit an empty time sheet"}


async def test_expired_or_missing_invitation_is_404(client):
    r = await client.get("/invitations/nosuchcode12")
    assert r.status_code == 404
    assert r.json()["error"] == "NOT_FOUND"


async def test_my_access_for_member_and_stranger(client, owner, project, make_user):
    r = await client.get("/users/me/access", headers=auth(owner))
    assert r.status_code == 200
    body = r.json()
    assert body["system_role"] is None
    assert body["system_permissions"] == {}
    assert body["routes"]["/projects"] is True
    assert body["routes"]["/users"] is False

    stranger = await make_user("stranger@timegate.io")
    routes = (await client.get("/users/me/access", headers=auth(stranger))).json()["routes"]
    assert routes["/time-sheets"] is False


async def test_my_access_for_admin(client, make_user):
    from timegate.core.rbac.permissions import SystemRole

    admin = await make_user("admin@timegate.io", system_role=SystemRole.ADMIN)
    body = (await client.get("/users/me/access", headers=auth(admin))).json()
    assert body["system_role"] == "admin"
    assert body["system_permissions"]["users:view"] == "View all platform users"
    assert "platform:manage" not in body["system_permissions"]
    assert body["routes"] == {
        "/users": True, "/organisations": True,
        "/projects": True, "/time-entries": True, "/time-sheets": True, "/contacts": True,
    }
