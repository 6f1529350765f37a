from typing import Set

from fastapi import WebSocket
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ChatError
from core.logger import ws_logger
from models.user import User
from schemas.chat import (
    AttachmentPayload,
    EditMessagePayload,
    MarkReadPayload,
    MessageRef,
    ReactionPayload,
    RoomRef,
    SendMessagePayload,
    SocketFrame,
    TypingPayload,
)
from services.chat_service import ChatService
from services.websocket_manager import WebSocketManager


def _room_ref(data) -> RoomRef:
    # {chatRoomId} یا فقط id
    if isinstance(data, (int, str)) and not isinstance(data, bool):
        return RoomRef(chat_room_id=data)
    return RoomRef.model_validate(data or {})


class ChatSession:
    """
    یک اتصال سوکت برای یک کاربر.

    هر فریم ورودی دقیقاً یک ack می‌گیرد؛ خطاها به صورت {"error": ...} در ack برمی‌گردند
    و اتصال باز می‌ماند.
    """

    def __init__(self, websocket: WebSocket, user: User, service: ChatService, manager: WebSocketManager):
        self.websocket = websocket
        self.user = user
        self.user_id = user.id
        self.service = service
        self.manager = manager
        self.rooms: Set[int] = set()

        self.handlers = {
            "join_chat_rooms": self.join_chat_rooms,
            "join_chat_room": self.join_chat_room,
            "leave_chat_room": self.leave_chat_room,
            "send_message": self.send_message,
            "typing_status": self.typing_status,
            "react_to_message": self.react_to_message,
            "mark_as_read": self.mark_as_read,
            "delete_message": self.delete_message,
            "edit_message": self.edit_message,
            "notify_attachment": self.notify_attachment,
        }

    # ---------------------------------------------
    # چرخه عمر
    # ---------------------------------------------
    async def open(self):
        self.manager.register(self)
        await self.join_chat_rooms(None)
        ws_logger.log_connect(self.user_id, len(self.rooms))

    def close(self):
        self.manager.unregister(self)
        ws_logger.log_disconnect(self.user_id)

    async def handle(self, raw):
        """پردازش یک فریم ورودی و ارسال ack"""
        ack_id = raw.get("ack") if isinstance(raw, dict) else None

        try:
            frame = SocketFrame.model_validate(raw)
            ack_id = frame.ack
            ws_logger.log_event(self.user_id, frame.action, frame.data)

            handler = self.handlers.get(frame.action)
            if handler is None:
                result = {"error": f"Unknown action: {frame.action}"}
            else:
                result = await handler(frame.data)

        except ChatError as e:
            ws_logger.logger.warning(f"⚠️ user={self.user_id}: {e.code} {e.message}")
            result = {"error": e.message}
        except PydanticValidationError as e:
            ws_logger.logger.warning(f"⚠️ user={self.user_id}: invalid payload: {e.errors()}")
            result = {"error": "Invalid payload"}
        except Exception as e:
            ws_logger.log_error("handle", e)
            result = {"error": "Internal server error"}

        await self.websocket.send_json({"type": "ack", "ack": ack_id, "data": result})

    # ---------------------------------------------
    # عضویت در کانال اتاق‌ها
    # ---------------------------------------------
    async def join_chat_rooms(self, data):
        room_ids = await self.service.active_room_ids(self.user_id)
        for room_id in room_ids:
            self.manager.add(room_id, self)
        return {"success": True, "rooms": sorted(self.rooms)}

    async def join_chat_room(self, data):
        ref = _room_ref(data)
        await self.service.verify_participant(ref.chat_room_id, self.user_id)
        self.manager.add(ref.chat_room_id, self)
        return {"success": True, "chat_room_id": ref.chat_room_id}

    async def leave_chat_room(self, data):
        ref = _room_ref(data)
        self.manager.remove(ref.chat_room_id, self)
        return {"success": True, "chat_room_id": ref.chat_room_id}

    # ---------------------------------------------
    # پیام‌ها
    # ---------------------------------------------
    async def send_message(self, data):
        payload = SendMessagePayload.model_validate(data or {})
        message = await self.service.send_message(
            room_id=payload.chat_room_id,
            sender_id=self.user_id,
            content=payload.content,
            content_type=payload.content_type,
            reply_to_id=payload.reply_to_id,
            metadata=payload.metadata,
        )
        return {"success": True, "message": message}

    async def typing_status(self, data):
        payload = TypingPayload.model_validate(data or {})
        if not self.manager.is_subscribed(payload.chat_room_id, self):
            return {"error": "Not subscribed to this chat room"}

        await self.manager.broadcast(payload.chat_room_id, "typing_status", {
            "chat_room_id": payload.chat_room_id,
            "user": self.user.to_dict(),
            "is_typing": payload.is_typing,
        }, skip=self)
        return {"success": True}

    async def react_to_message(self, data):
        payload = ReactionPayload.model_validate(data or {})
        result = await self.service.react_to_message(payload.message_id, self.user_id, payload.reaction)
        return {"success": True, **result}

    async def mark_as_read(self, data):
        payload = MarkReadPayload.model_validate(data or {})
        receipt = await self.service.mark_read(
            payload.chat_room_id, self.user_id, payload.message_id, origin=self
        )
        return {"success": True, **receipt}

    async def delete_message(self, data):
        payload = MessageRef.model_validate(data or {})
        await self.service.delete_message(payload.message_id, self.user_id)
        return {"success": True, "message_id": payload.message_id}

    async def edit_message(self, data):
        payload = EditMessagePayload.model_validate(data or {})
        message = await self.service.edit_message(payload.message_id, self.user_id, payload.content)
        return {"success": True, "message": message}

    async def notify_attachment(self, data):
        payload = AttachmentPayload.model_validate(data or {})
        await self.service.notify_attachment(
            payload.chat_room_id, self.user_id, payload.message_id, payload.attachments
        )
        return {"success": True}
