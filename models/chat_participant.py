from enum import Enum

from tortoise import fields, models


class ParticipantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    LEFT = "LEFT"


class ChatParticipant(models.Model):
    id = fields.IntField(pk=True)

    chat_room = fields.ForeignKeyField(
        "models.ChatRoom",
        related_name="participants",
        on_delete=fields.CASCADE
    )
    user = fields.ForeignKeyField(
        "models.User",
        related_name="chat_participations",
        on_delete=fields.CASCADE
    )

    is_admin = fields.BooleanField(default=False)
    # ACTIVE -> LEFT -> ACTIVE؛ رکورد عضویت هیچ‌وقت حذف نمی‌شود
    status = fields.CharEnumField(ParticipantStatus, default=ParticipantStatus.ACTIVE)

    last_read_message_id = fields.IntField(null=True)
    last_read_at = fields.DatetimeField(null=True)

    joined_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "chat_participants"
        unique_together = (("chat_room", "user"),)
