from core.config import settings
from services.chat_cache import ChatCache


def test_key_layout():
    assert ChatCache.room_key(7) == "chat:room:7"
    assert ChatCache.user_rooms_key(3) == "user:3:chatrooms"
    assert ChatCache.messages_key(7, 2, 20) == "chat:room:7:messages:2:20"
    assert ChatCache.participants_key(7) == "chat:room:7:participants"


async def test_room_roundtrip_with_ttl(cache, redis):
    await cache.set_room(1, {"id": 1, "name": "General"})

    assert await cache.get_room(1) == {"id": 1, "name": "General"}
    ttl = await redis.ttl("chat:room:1")
    assert 0 < ttl <= settings.CACHE_TTL_CHAT_ROOMS

    await cache.delete_room(1)
    assert await cache.get_room(1) is None


async def test_invalidate_messages_only_touches_one_room(cache, redis):
    await cache.set_messages(1, 1, 20, {"messages": []})
    await cache.set_messages(1, 2, 20, {"messages": []})
    await cache.set_messages(2, 1, 20, {"messages": []})
    await cache.set_room(1, {"id": 1})

    await cache.invalidate_messages(1)

    assert await cache.get_messages(1, 1, 20) is None
    assert await cache.get_messages(1, 2, 20) is None
    assert await cache.get_messages(2, 1, 20) == {"messages": []}
    assert await cache.get_room(1) == {"id": 1}
    assert 0 < await redis.ttl("chat:room:2:messages:1:20") <= settings.CACHE_TTL_MESSAGES


async def test_delete_user_rooms_for_many_users(cache):
    for uid in (1, 2, 3):
        await cache.set_user_rooms(uid, [{"id": uid}])

    await cache.delete_user_rooms(1, 2)

    assert await cache.get_user_rooms(1) is None
    assert await cache.get_user_rooms(2) is None
    assert await cache.get_user_rooms(3) == [{"id": 3}]


async def test_corrupted_entry_is_a_miss(cache, redis):
    await redis.set("chat:room:9:participants", "{not json")

    assert await cache.get_participants(9) is None

    await cache.set_participants(9, [{"user_id": 1}])
    assert await cache.get_participants(9) == [{"user_id": 1}]


async def test_broken_client_degrades_to_miss(broken_service):
    cache = broken_service.cache

    assert await cache.get_room(1) is None
    assert await cache.set_room(1, {"id": 1}) is False
    assert await cache.delete_user_rooms(1) is False
    assert await cache.invalidate_messages(1) is False
    assert await cache.invalidate_participants(1) is False
