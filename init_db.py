from tortoise import Tortoise

from core.config import settings

MODEL_MODULES = [
    "models.user",
    "models.organization",
    "models.department",
    "models.team",
    "models.project",
    "models.chat_room",
    "models.chat_participant",
    "models.chat_message",
]

TORTOISE_ORM = {
    "connections": {
        "default": settings.PG_URL
    },
    "apps": {
        "models": {
            "models": MODEL_MODULES + ["aerich.models"],
            "default_connection": "default",
        }
    },
    "use_tz": True,
    "timezone": "UTC",
}


async def init_db():
    await Tortoise.init(config=TORTOISE_ORM)
    await Tortoise.generate_schemas()


async def close_db():
    await Tortoise.close_connections()
