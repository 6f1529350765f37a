from typing import Iterable

from core.logger import ws_logger


class WebSocketManager:
    """
    نگه‌داری اتصال‌های زنده؛ هر اتاق چت یک کانال است.

    فقط سشن‌هایی که در کانال یک اتاق subscribe شده‌اند رویدادهای آن را می‌گیرند.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(WebSocketManager, cls).__new__(cls)
            cls._instance.channels = {}
            cls._instance.sessions = {}
        return cls._instance

    def clear(self):
        self.channels.clear()
        self.sessions.clear()

    # ---------------------------------------------
    # ثبت سشن کاربر
    # ---------------------------------------------
    def register(self, session):
        self.sessions.setdefault(session.user_id, []).append(session)

    def unregister(self, session):
        for room_id in list(session.rooms):
            self.remove(room_id, session)

        user_sessions = self.sessions.get(session.user_id, [])
        if session in user_sessions:
            user_sessions.remove(session)
        if not user_sessions:
            self.sessions.pop(session.user_id, None)

    # ---------------------------------------------
    # subscribe / unsubscribe کانال اتاق
    # ---------------------------------------------
    def add(self, room_id: int, session):
        channel = self.channels.setdefault(room_id, [])
        if session not in channel:
            channel.append(session)
        session.rooms.add(room_id)

    def remove(self, room_id: int, session):
        channel = self.channels.get(room_id)
        if channel and session in channel:
            channel.remove(session)
            if not channel:
                del self.channels[room_id]
        session.rooms.discard(room_id)

    def drop_user(self, room_id: int, user_id: int):
        """قطع subscribe همه سشن‌های یک کاربر از کانال (بعد از خروج از اتاق)"""
        for session in list(self.channels.get(room_id, [])):
            if session.user_id == user_id:
                self.remove(room_id, session)

    def is_subscribed(self, room_id: int, session) -> bool:
        return session in self.channels.get(room_id, [])

    # ---------------------------------------------
    # ارسال
    # ---------------------------------------------
    async def _deliver(self, sessions: Iterable, frame: dict) -> int:
        delivered = 0
        dead_sessions = []

        for session in sessions:
            try:
                await session.websocket.send_json(frame)
                delivered += 1
            except Exception as e:
                ws_logger.logger.warning(f"⚠️ Failed to send to user {session.user_id}: {e}")
                dead_sessions.append(session)

        # حذف کانکشن‌های خراب
        for session in dead_sessions:
            self.unregister(session)

        return delivered

    async def broadcast(self, room_id: int, event: str, data, skip=None):
        """ارسال رویداد به همه subscriberهای اتاق (به‌جز skip)"""
        receivers = [s for s in self.channels.get(room_id, []) if s is not skip]
        delivered = await self._deliver(receivers, {"type": event, "data": data})
        ws_logger.log_broadcast(room_id, event, delivered)

    async def notify_users(self, user_ids: Iterable[int], event: str, data):
        receivers = [s for uid in set(user_ids) for s in self.sessions.get(uid, [])]
        await self._deliver(receivers, {"type": event, "data": data})
