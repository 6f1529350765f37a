from typing import Awaitable, Callable, Dict, List, Optional

from core.logger import app_logger
from models.chat_room import EntityType

# (kind, entity_id, name, description, user_id)
EntityCreatedHandler = Callable[[EntityType, int, str, Optional[str], int], Awaitable[object]]


class EntityEvents:
    """
    رویداد «ساخت موجودیت» برای سرویس‌های دیگر (مثل چت).

    خطای هر subscriber فقط لاگ می‌شود؛ ساخت موجودیت نباید به خاطر آن شکست بخورد.
    """

    def __init__(self):
        self._subscribers: Dict[EntityType, List[EntityCreatedHandler]] = {}

    def subscribe(self, kind: EntityType, handler: EntityCreatedHandler):
        self._subscribers.setdefault(kind, []).append(handler)

    def clear(self):
        self._subscribers.clear()

    async def entity_created(
            self,
            kind: EntityType,
            entity_id: int,
            name: str,
            user_id: int,
            description: str = None,
    ):
        for handler in self._subscribers.get(kind, []):
            try:
                await handler(kind, entity_id, name, description, user_id)
            except Exception as e:
                app_logger.error(
                    f"❌ {kind.value} #{entity_id} created, but hook "
                    f"{getattr(handler, '__qualname__', handler)} failed: {e}"
                )


entity_events = EntityEvents()
