from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from api.deps import get_chat_service, get_current_user
from models.user import User
from schemas.chat import ChatRoomCreate, ChatRoomUpdate, MessageCreate, ParticipantAdd
from services.chat_service import ChatService

router = APIRouter(prefix="/api/v1/chat", tags=["Chat"])


def ok(data=None, message: str = None):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


# ----------------------------------------
# 1. اتاق‌ها
# ----------------------------------------
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: ChatRoomCreate,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    """ایجاد اتاق چت برای یک موجودیت"""
    room = await service.create_room(
        creator_id=current_user.id,
        name=payload.name,
        description=payload.description,
        room_type=payload.type,
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
    )
    return ok(room, "Chat room created successfully")


@router.get("")
async def list_rooms(
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    """اتاق‌های کاربر با آخرین پیام و تعداد خوانده‌نشده"""
    return ok(await service.list_rooms(current_user.id))


@router.get("/{room_id}")
async def get_room(
    room_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    return ok(await service.get_room(current_user.id, room_id))


@router.put("/{room_id}")
async def update_room(
    room_id: int,
    payload: ChatRoomUpdate,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    """ویرایش نام/توضیحات یا آرشیو اتاق (فقط ادمین)"""
    room = await service.update_room(
        room_id,
        current_user.id,
        name=payload.name,
        description=payload.description,
        is_archived=payload.is_archived,
    )
    return ok(room, "Chat room updated successfully")


# ----------------------------------------
# 2. پیام‌ها
# ----------------------------------------
@router.get("/{room_id}/messages")
async def fetch_messages(
    room_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    before: Optional[datetime] = None,
    before_id: Optional[int] = Query(None, alias="beforeId"),
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    """پیام‌ها: صفحه‌ای (page/limit) یا با cursor (before + beforeId)"""
    result = await service.fetch_messages(
        room_id, current_user.id, page=page, limit=limit, before=before, before_id=before_id
    )
    return ok(result)


@router.post("/{room_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: int,
    payload: MessageCreate,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    message = await service.send_message(
        room_id=room_id,
        sender_id=current_user.id,
        content=payload.content,
        content_type=payload.content_type,
        reply_to_id=payload.reply_to_id,
        metadata=payload.metadata,
    )
    return ok(message, "Message sent successfully")


# ----------------------------------------
# 3. اعضا و ادمین‌ها
# ----------------------------------------
@router.post("/{room_id}/participants")
async def add_participant(
    room_id: int,
    payload: ParticipantAdd,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    participant = await service.add_participant(room_id, current_user.id, payload.user_id)
    return ok(participant, "Participant added successfully")


@router.delete("/{room_id}/participants/{user_id}")
async def remove_participant(
    room_id: int,
    user_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    """حذف عضو؛ هر کاربر می‌تواند خودش را خارج کند"""
    result = await service.remove_participant(room_id, current_user.id, user_id)
    return ok(result, "Participant removed successfully")


@router.put("/{room_id}/admins/{user_id}")
async def promote_admin(
    room_id: int,
    user_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    result = await service.promote_admin(room_id, current_user.id, user_id)
    return ok(result, "Admin added successfully")


@router.delete("/{room_id}/admins/{user_id}")
async def demote_admin(
    room_id: int,
    user_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    result = await service.demote_admin(room_id, current_user.id, user_id)
    return ok(result, "Admin removed successfully")


# ----------------------------------------
# 4. پین
# ----------------------------------------
@router.post("/{room_id}/pin/{message_id}", status_code=status.HTTP_201_CREATED)
async def pin_message(
    room_id: int,
    message_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    pin = await service.pin_message(room_id, message_id, current_user.id)
    return ok(pin, "Message pinned successfully")


@router.delete("/{room_id}/pin/{message_id}")
async def unpin_message(
    room_id: int,
    message_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    result = await service.unpin_message(room_id, message_id, current_user.id)
    return ok(result, "Message unpinned successfully")


@router.get("/{room_id}/pinned")
async def list_pins(
    room_id: int,
    service: ChatService = Depends(get_chat_service),
    current_user: User = Depends(get_current_user)
):
    return ok(await service.list_pins(room_id, current_user.id))
