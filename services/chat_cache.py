import json

from core.config import settings
from core.logger import cache_logger


class ChatCache:
    """
    کش Redis برای اتاق‌ها، لیست اتاق‌های کاربر، صفحات پیام و لیست اعضا.

    هیچ خطایی از این کلاس بیرون نمی‌رود: هر خطای Redis یا JSON لاگ می‌شود
    و به عنوان cache miss برگردانده می‌شود.
    """

    def __init__(self, client=None):
        if client is None:
            from core.cache import redis_client
            client = redis_client
        self.client = client

    # --------------------------------------
    # کلیدها
    # --------------------------------------
    @staticmethod
    def room_key(room_id: int) -> str:
        return f"chat:room:{room_id}"

    @staticmethod
    def user_rooms_key(user_id: int) -> str:
        return f"user:{user_id}:chatrooms"

    @staticmethod
    def messages_key(room_id: int, page: int, limit: int) -> str:
        return f"chat:room:{room_id}:messages:{page}:{limit}"

    @staticmethod
    def participants_key(room_id: int) -> str:
        return f"chat:room:{room_id}:participants"

    # --------------------------------------
    # عملیات پایه
    # --------------------------------------
    async def _get(self, key: str):
        try:
            cached = await self.client.get(key)
        except Exception as e:
            cache_logger.warning(f"⚠️ Cache read failed for {key}: {e}")
            return None

        if cached is None:
            cache_logger.debug(f"MISS {key}")
            return None

        try:
            return json.loads(cached)
        except (TypeError, ValueError) as e:
            cache_logger.warning(f"⚠️ Corrupted cache entry {key}: {e}")
            return None

    async def _set(self, key: str, data, ttl: int) -> bool:
        try:
            await self.client.set(key, json.dumps(data, default=str), ex=ttl)
            return True
        except Exception as e:
            cache_logger.warning(f"⚠️ Cache write failed for {key}: {e}")
            return False

    async def _delete(self, *keys: str) -> bool:
        if not keys:
            return True
        try:
            await self.client.delete(*keys)
            cache_logger.debug(f"DEL {', '.join(keys)}")
            return True
        except Exception as e:
            cache_logger.warning(f"⚠️ Cache delete failed for {keys}: {e}")
            return False

    # --------------------------------------
    # اتاق
    # --------------------------------------
    async def get_room(self, room_id: int):
        return await self._get(self.room_key(room_id))

    async def set_room(self, room_id: int, data: dict) -> bool:
        return await self._set(self.room_key(room_id), data, settings.CACHE_TTL_CHAT_ROOMS)

    async def delete_room(self, room_id: int) -> bool:
        return await self._delete(self.room_key(room_id))

    # --------------------------------------
    # لیست اتاق‌های کاربر
    # --------------------------------------
    async def get_user_rooms(self, user_id: int):
        return await self._get(self.user_rooms_key(user_id))

    async def set_user_rooms(self, user_id: int, rooms: list) -> bool:
        return await self._set(self.user_rooms_key(user_id), rooms, settings.CACHE_TTL_CHAT_ROOMS)

    async def delete_user_rooms(self, *user_ids: int) -> bool:
        return await self._delete(*[self.user_rooms_key(uid) for uid in user_ids])

    # --------------------------------------
    # صفحات پیام
    # --------------------------------------
    async def get_messages(self, room_id: int, page: int, limit: int):
        return await self._get(self.messages_key(room_id, page, limit))

    async def set_messages(self, room_id: int, page: int, limit: int, data: dict) -> bool:
        return await self._set(
            self.messages_key(room_id, page, limit), data, settings.CACHE_TTL_MESSAGES
        )

    async def invalidate_messages(self, room_id: int) -> bool:
        """حذف همه صفحات پیام یک اتاق؛ با هر پیام جدید مرز صفحات جابه‌جا می‌شود"""
        pattern = f"chat:room:{room_id}:messages:*"
        try:
            keys = [key async for key in self.client.scan_iter(match=pattern, count=100)]
            if keys:
                await self.client.delete(*keys)
            cache_logger.debug(f"DEL {len(keys)} message pages of room {room_id}")
            return True
        except Exception as e:
            cache_logger.warning(f"⚠️ Cache invalidation failed for {pattern}: {e}")
            return False

    # --------------------------------------
    # اعضا
    # --------------------------------------
    async def get_participants(self, room_id: int):
        return await self._get(self.participants_key(room_id))

    async def set_participants(self, room_id: int, data: list) -> bool:
        return await self._set(
            self.participants_key(room_id), data, settings.CACHE_TTL_PARTICIPANTS
        )

    async def invalidate_participants(self, room_id: int) -> bool:
        return await self._delete(self.participants_key(room_id))
