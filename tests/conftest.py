import pytest
from fakeredis import aioredis as fake_aioredis
from tortoise import Tortoise

from init_db import MODEL_MODULES
from models.team import Team
from models.user import User
from services.chat_cache import ChatCache
from services.chat_service import ChatService
from services.websocket_manager import WebSocketManager


class FakeBroadcaster:
    """ثبت رویدادها به جای ارسال روی سوکت"""

    def __init__(self):
        self.events = []
        self.notified = []
        self.dropped = []

    async def broadcast(self, room_id, event, data, skip=None):
        self.events.append((room_id, event, data))

    async def notify_users(self, user_ids, event, data):
        self.notified.append((sorted(set(user_ids)), event, data))

    def drop_user(self, room_id, user_id):
        self.dropped.append((room_id, user_id))

    def of_type(self, event):
        return [data for _, name, data in self.events if name == event]


class FakeWebSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    def frames(self, frame_type):
        return [f for f in self.sent if f["type"] == frame_type]


class BrokenRedis:
    """کلاینتی که همیشه قطع است"""

    async def get(self, *args, **kwargs):
        raise ConnectionError("redis is down")

    async def set(self, *args, **kwargs):
        raise ConnectionError("redis is down")

    async def delete(self, *args, **kwargs):
        raise ConnectionError("redis is down")

    async def scan_iter(self, *args, **kwargs):
        raise ConnectionError("redis is down")
        yield  # pragma: no cover


@pytest.fixture(autouse=True)
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": MODEL_MODULES},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
async def redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cache(redis):
    return ChatCache(client=redis)


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def service(cache, broadcaster):
    return ChatService(cache=cache, broadcaster=broadcaster)


@pytest.fixture
def broken_service(broadcaster):
    return ChatService(cache=ChatCache(client=BrokenRedis()), broadcaster=broadcaster)


@pytest.fixture
def manager():
    ws_manager = WebSocketManager()
    ws_manager.clear()
    yield ws_manager
    ws_manager.clear()


@pytest.fixture
def make_socket():
    return FakeWebSocket


@pytest.fixture
def make_user():
    counter = {"n": 0}

    async def _make_user(first_name=None, role="user", **kwargs):
        counter["n"] += 1
        return await User.create(
            username=kwargs.pop("username", f"user{counter['n']}"),
            first_name=first_name or f"User{counter['n']}",
            last_name="Test",
            role=role,
            **kwargs,
        )

    return _make_user


@pytest.fixture
def make_team():
    async def _make_team(*members, name="Core"):
        team = await Team.create(name=name)
        if members:
            await team.members.add(*members)
        return team

    return _make_team


@pytest.fixture
async def team_room(service, make_user, make_team):
    """اتاق تیم با یک ادمین (owner) و دو عضو عادی"""
    owner = await make_user("Owner")
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    team = await make_team(owner, alice, bob)

    room = await service.create_room(
        creator_id=owner.id,
        name=None,
        description=None,
        room_type="GROUP",
        entity_type="TEAM",
        entity_id=team.id,
    )
    return room, owner, alice, bob
