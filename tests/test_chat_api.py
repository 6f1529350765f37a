import pytest
from httpx import ASGITransport, AsyncClient

from api.deps import get_chat_service
from core.security import create_access_token
from main import app
from models.chat_room import ChatRoom, EntityType
from models.organization import Organization
from services.department_service import DepartmentService
from services.entity_hooks import EntityEvents


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
async def client(service):
    app.dependency_overrides[get_chat_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def test_create_and_list_rooms(client, make_user, make_team):
    owner = await make_user()
    member = await make_user()
    team = await make_team(owner, member)

    resp = await client.post(
        "/api/v1/chat",
        json={"entityType": "TEAM", "entityId": team.id, "name": "Core team"},
        headers=_auth(owner),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["name"] == "Core team"

    resp = await client.get("/api/v1/chat", headers=_auth(member))
    assert resp.status_code == 200
    rooms = resp.json()["data"]
    assert [r["id"] for r in rooms] == [body["data"]["id"]]
    assert rooms[0]["unread_count"] == 1


async def test_duplicate_room_returns_conflict_envelope(client, make_user, make_team):
    owner = await make_user()
    team = await make_team(owner)
    payload = {"entity_type": "TEAM", "entity_id": team.id}

    first = await client.post("/api/v1/chat", json=payload, headers=_auth(owner))
    second = await client.post("/api/v1/chat", json=payload, headers=_auth(owner))

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["success"] is False
    assert second.json()["code"] == "CONFLICT"


async def test_invalid_body_is_400(client, make_user):
    owner = await make_user()

    resp = await client.post(
        "/api/v1/chat",
        json={"entityType": "GALAXY", "entityId": 1},
        headers=_auth(owner),
    )

    assert resp.status_code == 400
    assert resp.json()["success"] is False


async def test_invalid_token_is_rejected(client):
    resp = await client.get("/api/v1/chat", headers={"Authorization": "Bearer nope"})

    assert resp.status_code == 401
    assert resp.json()["success"] is False


async def test_message_flow(client, team_room):
    room, owner, alice, _ = team_room

    sent = await client.post(
        f"/api/v1/chat/{room['id']}/messages",
        json={"content": "hello over http"},
        headers=_auth(alice),
    )
    assert sent.status_code == 201

    resp = await client.get(
        f"/api/v1/chat/{room['id']}/messages",
        params={"page": 1, "limit": 10},
        headers=_auth(owner),
    )
    data = resp.json()["data"]
    assert data["messages"][-1]["content"] == "hello over http"
    assert data["pagination"]["total"] == 2


async def test_non_participant_is_forbidden(client, team_room, make_user):
    room, _, _, _ = team_room
    stranger = await make_user()

    resp = await client.get(f"/api/v1/chat/{room['id']}", headers=_auth(stranger))

    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"


async def test_participants_and_admins(client, team_room, make_user):
    room, owner, alice, _ = team_room
    carol = await make_user()

    resp = await client.post(
        f"/api/v1/chat/{room['id']}/participants", json={"userId": carol.id}, headers=_auth(owner)
    )
    assert resp.status_code == 200

    resp = await client.put(f"/api/v1/chat/{room['id']}/admins/{alice.id}", headers=_auth(owner))
    assert resp.json()["data"]["is_admin"] is True

    resp = await client.delete(f"/api/v1/chat/{room['id']}/admins/{owner.id}", headers=_auth(owner))
    assert resp.status_code == 200

    resp = await client.delete(f"/api/v1/chat/{room['id']}/participants/{alice.id}", headers=_auth(alice))
    assert resp.status_code == 409


async def test_pin_routes(client, service, team_room):
    room, owner, _, _ = team_room
    msg = await service.send_message(room["id"], owner.id, "pin me")

    resp = await client.post(f"/api/v1/chat/{room['id']}/pin/{msg['id']}", headers=_auth(owner))
    assert resp.status_code == 201

    resp = await client.post(f"/api/v1/chat/{room['id']}/pin/{msg['id']}", headers=_auth(owner))
    assert resp.status_code == 409

    resp = await client.get(f"/api/v1/chat/{room['id']}/pinned", headers=_auth(owner))
    assert [p["message"]["id"] for p in resp.json()["data"]] == [msg["id"]]

    resp = await client.delete(f"/api/v1/chat/{room['id']}/pin/{msg['id']}", headers=_auth(owner))
    assert resp.status_code == 200


async def test_update_room_route(client, team_room):
    room, owner, _, _ = team_room

    resp = await client.put(
        f"/api/v1/chat/{room['id']}",
        json={"name": "Launch room", "isArchived": True},
        headers=_auth(owner),
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["is_archived"] is True


async def test_department_route_creates_room(client, service, make_user, monkeypatch):
    admin = await make_user(role="admin")
    org = await Organization.create(name="Acme", owner_id=admin.id)

    events = EntityEvents()
    service.register_entity_hooks(events)
    monkeypatch.setattr(DepartmentService, "events", events)

    resp = await client.post(
        "/api/v1/departments",
        json={"name": "Support", "organizationId": org.id},
        headers=_auth(admin),
    )

    assert resp.status_code == 201
    dept_id = resp.json()["data"]["id"]
    assert await ChatRoom.exists(entity_type=EntityType.DEPARTMENT, entity_id=dept_id)


async def test_department_route_requires_admin(client, make_user):
    user = await make_user()
    org = await Organization.create(name="Acme")

    resp = await client.post(
        "/api/v1/departments",
        json={"name": "Support", "organizationId": org.id},
        headers=_auth(user),
    )

    assert resp.status_code == 403


async def test_large_page_limit_is_capped(client, team_room):
    room, owner, _, _ = team_room

    resp = await client.get(
        f"/api/v1/chat/{room['id']}/messages",
        params={"page": 1, "limit": 200},
        headers=_auth(owner),
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["pagination"]["limit"] == 100
