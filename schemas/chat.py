from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from models.chat_message import ContentType
from models.chat_room import EntityType, RoomType


class CamelModel(BaseModel):
    """بدنه‌ها هم camelCase (مثل سوکت) و هم snake_case قبول می‌کنند"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# --------------------------------------
# HTTP
# --------------------------------------
class ChatRoomCreate(CamelModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    type: RoomType = RoomType.GROUP
    entity_type: EntityType
    entity_id: int = Field(..., gt=0)


class ChatRoomUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_archived: Optional[bool] = None


class ParticipantAdd(CamelModel):
    user_id: int = Field(..., gt=0)


class MessageCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=10000)
    content_type: ContentType = ContentType.TEXT
    reply_to_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


class DepartmentCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    organization_id: int = Field(..., gt=0)
    member_ids: List[int] = []


# --------------------------------------
# سوکت
# --------------------------------------
class SocketFrame(BaseModel):
    action: str
    data: Any = None
    ack: Optional[Union[int, str]] = None


class RoomRef(CamelModel):
    chat_room_id: int


class SendMessagePayload(MessageCreate):
    chat_room_id: int


class TypingPayload(CamelModel):
    chat_room_id: int
    is_typing: bool = False


class ReactionPayload(CamelModel):
    message_id: int
    reaction: str = Field(..., min_length=1, max_length=10)


class MarkReadPayload(CamelModel):
    chat_room_id: int
    message_id: int


class MessageRef(CamelModel):
    message_id: int


class EditMessagePayload(CamelModel):
    message_id: int
    content: str = Field(..., min_length=1, max_length=10000)


class AttachmentPayload(CamelModel):
    chat_room_id: int
    message_id: int
    attachments: List[Dict[str, Any]] = []

