import pytest

from api.v1.ws import chat_ws
from core.security import create_access_token
from services.chat_gateway import ChatSession
from services.chat_service import ChatService


@pytest.fixture
def live_service(cache, manager):
    return ChatService(cache=cache, broadcaster=manager)


@pytest.fixture
def connect(live_service, manager, make_socket):
    async def _connect(user):
        session = ChatSession(make_socket(), user, live_service, manager)
        await session.open()
        return session

    return _connect


@pytest.fixture
async def room(live_service, make_user, make_team):
    owner = await make_user("Owner")
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    team = await make_team(owner, alice, bob)
    data = await live_service.create_room(owner.id, None, None, "GROUP", "TEAM", team.id)
    return data, owner, alice, bob


def _acks(session):
    return session.websocket.frames("ack")


async def test_open_subscribes_to_active_rooms(connect, manager, room):
    data, owner, _, _ = room

    session = await connect(owner)

    assert session.rooms == {data["id"]}
    assert manager.is_subscribed(data["id"], session)


async def test_every_frame_gets_exactly_one_ack(connect, room):
    data, owner, _, _ = room
    session = await connect(owner)

    frames = [
        {"action": "send_message", "data": {"chatRoomId": data["id"], "content": "hi"}, "ack": 1},
        {"action": "no_such_action", "ack": 2},
        {"action": "send_message", "data": {"chatRoomId": data["id"]}, "ack": 3},
        {"action": "send_message", "data": {"chatRoomId": 999, "content": "x"}, "ack": 4},
        {"action": "mark_as_read", "data": {"chatRoomId": data["id"], "messageId": 999}, "ack": 5},
    ]
    for frame in frames:
        await session.handle(frame)

    acks = _acks(session)
    assert [a["ack"] for a in acks] == [1, 2, 3, 4, 5]
    assert acks[0]["data"]["success"] is True
    assert acks[1]["data"] == {"error": "Unknown action: no_such_action"}
    assert acks[2]["data"] == {"error": "Invalid payload"}
    assert acks[3]["data"] == {"error": "You are not a participant in this chat room"}
    assert acks[4]["data"] == {"error": "Message not found in this chat room"}


async def test_malformed_frame_still_acked(connect, room):
    _, owner, _, _ = room
    session = await connect(owner)

    await session.handle({"data": {}, "ack": "abc"})

    assert _acks(session) == [{"type": "ack", "ack": "abc", "data": {"error": "Invalid payload"}}]


async def test_send_message_reaches_subscribers_only(connect, manager, room, make_user):
    data, owner, alice, bob = room
    owner_session = await connect(owner)
    alice_session = await connect(alice)
    bob_session = await connect(bob)
    await bob_session.handle({"action": "leave_chat_room", "data": data["id"], "ack": 1})

    await owner_session.handle({
        "action": "send_message",
        "data": {"chatRoomId": data["id"], "content": "hello team", "contentType": "TEXT"},
        "ack": 2,
    })

    received = alice_session.websocket.frames("new_message")
    assert len(received) == 1
    assert received[0]["data"]["content"] == "hello team"
    assert owner_session.websocket.frames("new_message")[0]["data"]["id"] == received[0]["data"]["id"]
    assert bob_session.websocket.frames("new_message") == []


async def test_typing_excludes_sender(connect, room):
    data, owner, alice, _ = room
    owner_session = await connect(owner)
    alice_session = await connect(alice)

    await owner_session.handle({
        "action": "typing_status",
        "data": {"chatRoomId": data["id"], "isTyping": True},
        "ack": 1,
    })

    assert owner_session.websocket.frames("typing_status") == []
    typing = alice_session.websocket.frames("typing_status")
    assert typing[0]["data"]["is_typing"] is True
    assert typing[0]["data"]["user"]["id"] == owner.id


async def test_join_room_requires_participation(connect, live_service, room, make_user):
    data, owner, _, _ = room
    stranger = await make_user()
    session = await connect(stranger)

    await session.handle({"action": "join_chat_room", "data": {"chatRoomId": data["id"]}, "ack": 1})
    assert _acks(session)[0]["data"] == {"error": "You are not a participant in this chat room"}
    assert session.rooms == set()

    await live_service.add_participant(data["id"], owner.id, stranger.id)
    await session.handle({"action": "join_chat_room", "data": data["id"], "ack": 2})
    assert _acks(session)[1]["data"] == {"success": True, "chat_room_id": data["id"]}
    assert session.rooms == {data["id"]}


async def test_read_receipt_skips_origin(connect, room):
    data, owner, alice, _ = room
    owner_session = await connect(owner)
    alice_session = await connect(alice)

    await owner_session.handle({
        "action": "send_message", "data": {"chatRoomId": data["id"], "content": "read me"}, "ack": 1
    })
    message_id = _acks(owner_session)[0]["data"]["message"]["id"]

    await alice_session.handle({
        "action": "mark_as_read", "data": {"chatRoomId": data["id"], "messageId": message_id}, "ack": 2
    })

    assert alice_session.websocket.frames("read_status_update") == []
    receipt = owner_session.websocket.frames("read_status_update")[0]["data"]
    assert receipt["user_id"] == alice.id
    assert receipt["last_read_message_id"] == message_id


async def test_removed_participant_stops_receiving(connect, live_service, room):
    data, owner, _, bob = room
    owner_session = await connect(owner)
    bob_session = await connect(bob)

    await live_service.remove_participant(data["id"], owner.id, bob.id)
    await owner_session.handle({
        "action": "send_message", "data": {"chatRoomId": data["id"], "content": "bye bob"}, "ack": 1
    })

    assert bob_session.rooms == set()
    contents = [f["data"]["content"] for f in bob_session.websocket.frames("new_message")]
    assert "bye bob" not in contents


async def test_react_edit_delete_over_socket(connect, room):
    data, owner, alice, _ = room
    owner_session = await connect(owner)
    alice_session = await connect(alice)

    await owner_session.handle({
        "action": "send_message", "data": {"chatRoomId": data["id"], "content": "v1"}, "ack": 1
    })
    message_id = _acks(owner_session)[0]["data"]["message"]["id"]

    await alice_session.handle({
        "action": "react_to_message", "data": {"messageId": message_id, "reaction": "👍"}, "ack": 2
    })
    await owner_session.handle({
        "action": "edit_message", "data": {"messageId": message_id, "content": "v2"}, "ack": 3
    })
    await owner_session.handle({
        "action": "delete_message", "data": {"messageId": message_id}, "ack": 4
    })

    frames = alice_session.websocket.sent
    types = [f["type"] for f in frames if f["type"] != "ack"]
    assert types[-3:] == ["message_reaction_update", "message_updated", "message_deleted"]
    assert alice_session.websocket.frames("message_updated")[0]["data"]["content"] == "v2"


async def test_close_unregisters_session(connect, manager, room):
    data, owner, _, _ = room
    session = await connect(owner)

    session.close()

    assert not manager.is_subscribed(data["id"], session)
    assert owner.id not in manager.sessions


async def test_endpoint_cleans_up_when_open_fails(manager, make_user, make_socket):
    user = await make_user()

    class FailingService:
        async def active_room_ids(self, user_id):
            raise RuntimeError("database is down")

    class EndpointSocket(make_socket):
        async def accept(self):
            pass

        async def close(self, code=1000):
            self.closed = code

    await chat_ws(EndpointSocket(), token=create_access_token(user.id), service=FailingService())

    assert user.id not in manager.sessions
    assert manager.channels == {}
