from enum import Enum

from tortoise import fields, models

DELETED_PLACEHOLDER = "This message has been deleted"


class ContentType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    SYSTEM = "SYSTEM"


class ChatMessage(models.Model):
    id = fields.IntField(pk=True)

    chat_room = fields.ForeignKeyField(
        "models.ChatRoom",
        related_name="messages",
        on_delete=fields.CASCADE
    )
    sender = fields.ForeignKeyField(
        "models.User",
        related_name="sent_messages",
        on_delete=fields.CASCADE
    )

    content = fields.TextField()
    content_type = fields.CharEnumField(ContentType, default=ContentType.TEXT)

    # پاسخ به پیامی در همان اتاق
    reply_to = fields.ForeignKeyField(
        "models.ChatMessage",
        related_name="replies",
        on_delete=fields.SET_NULL,
        null=True
    )
    metadata = fields.JSONField(null=True)

    is_edited = fields.BooleanField(default=False)
    edited_at = fields.DatetimeField(null=True)

    # حذف نرم
    is_deleted = fields.BooleanField(default=False)
    deleted_at = fields.DatetimeField(null=True)
    deleted_by = fields.ForeignKeyField(
        "models.User",
        related_name="deleted_messages",
        on_delete=fields.SET_NULL,
        null=True
    )

    created_at = fields.DatetimeField(auto_now_add=True)

    reactions: fields.ReverseRelation["MessageReaction"]

    class Meta:
        table = "chat_messages"


class MessageReaction(models.Model):
    id = fields.IntField(pk=True)

    message = fields.ForeignKeyField(
        "models.ChatMessage",
        related_name="reactions",
        on_delete=fields.CASCADE
    )
    user = fields.ForeignKeyField(
        "models.User",
        related_name="message_reactions",
        on_delete=fields.CASCADE
    )
    reaction = fields.CharField(max_length=50)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "message_reactions"
        unique_together = (("message", "user", "reaction"),)


class PinnedMessage(models.Model):
    id = fields.IntField(pk=True)

    chat_room = fields.ForeignKeyField(
        "models.ChatRoom",
        related_name="pins",
        on_delete=fields.CASCADE
    )
    message = fields.ForeignKeyField(
        "models.ChatMessage",
        related_name="pins",
        on_delete=fields.CASCADE
    )
    pinned_by = fields.ForeignKeyField(
        "models.User",
        related_name="pinned_messages",
        on_delete=fields.CASCADE
    )
    pinned_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "pinned_messages"
        unique_together = (("chat_room", "message"),)
