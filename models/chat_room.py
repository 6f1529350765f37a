from enum import Enum

from tortoise import fields, models


class RoomType(str, Enum):
    GROUP = "GROUP"
    DIRECT = "DIRECT"
    CHANNEL = "CHANNEL"


class EntityType(str, Enum):
    ORGANIZATION = "ORGANIZATION"
    DEPARTMENT = "DEPARTMENT"
    TEAM = "TEAM"
    PROJECT = "PROJECT"
    TASK = "TASK"


class ChatRoom(models.Model):
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100)
    description = fields.TextField(null=True)
    type = fields.CharEnumField(RoomType, default=RoomType.GROUP)

    # موجودیت صاحب اتاق؛ برای هر موجودیت حداکثر یک اتاق
    entity_type = fields.CharEnumField(EntityType)
    entity_id = fields.IntField()

    is_active = fields.BooleanField(default=True)
    is_archived = fields.BooleanField(default=False)
    archived_at = fields.DatetimeField(null=True)
    last_message_at = fields.DatetimeField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    participants: fields.ReverseRelation["ChatParticipant"]
    messages: fields.ReverseRelation["ChatMessage"]

    class Meta:
        table = "chat_rooms"
        unique_together = (("entity_type", "entity_id"),)
        ordering = ["-last_message_at"]

    def __str__(self):
        return f"ChatRoom #{self.id}: {self.name}"
