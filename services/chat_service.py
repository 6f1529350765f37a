from datetime import datetime
from typing import List, Optional

from tortoise import timezone
from tortoise.exceptions import IntegrityError
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from core.config import settings
from core.exceptions import Conflict, Forbidden, NotFound, ValidationError
from core.logger import db_logger
from models.chat_message import (
    DELETED_PLACEHOLDER,
    ChatMessage,
    ContentType,
    MessageReaction,
    PinnedMessage,
)
from models.chat_participant import ChatParticipant, ParticipantStatus
from models.chat_room import ChatRoom, EntityType, RoomType
from models.user import User
from services.chat_cache import ChatCache
from services.room_directory import EntityRef, RoomDirectory
from services.websocket_manager import WebSocketManager

MAX_CONTENT_LENGTH = 10000
MAX_REACTION_LENGTH = 10


def _iso(value: Optional[datetime]):
    return value.isoformat() if value else None


class ChatService:

    def __init__(self, cache: ChatCache = None, directory: RoomDirectory = None, broadcaster=None):
        self.cache = cache or ChatCache()
        self.directory = directory or RoomDirectory()
        self.broadcaster = broadcaster or WebSocketManager()

    # --------------------------------------
    # ثبت hook ساخت موجودیت‌ها
    # --------------------------------------
    def register_entity_hooks(self, events):
        for kind in EntityType:
            events.subscribe(kind, self.generate_room)

    # --------------------------------------
    # ایجاد اتاق چت
    # --------------------------------------
    async def create_room(
            self,
            creator_id: int,
            name: Optional[str],
            description: Optional[str],
            room_type,
            entity_type,
            entity_id: int,
    ):
        ref = EntityRef(EntityType(entity_type), entity_id)

        if await ChatRoom.exists(entity_type=ref.kind, entity_id=ref.id):
            raise Conflict(f"Chat room already exists for this {ref.kind.value}")

        members = await self.directory.resolve_members(ref)
        if members is None:
            raise NotFound(f"{ref.kind.value} not found")

        db_logger.logger.info(
            f"Creating chat room: entity={ref.kind.value}#{ref.id}, creator={creator_id}, "
            f"members={len(members)}"
        )

        try:
            async with in_transaction() as conn:
                room = await ChatRoom.create(
                    name=name or f"{ref.kind.value} Chat",
                    description=description,
                    type=RoomType(room_type),
                    entity_type=ref.kind,
                    entity_id=ref.id,
                    using_db=conn,
                )
                await ChatParticipant.create(
                    chat_room=room, user_id=creator_id, is_admin=True, using_db=conn
                )

                others = sorted(members - {creator_id})
                if others:
                    await ChatParticipant.bulk_create(
                        [ChatParticipant(chat_room_id=room.id, user_id=uid, is_admin=False) for uid in others],
                        using_db=conn,
                    )

                welcome = await self._create_system_message(
                    room.id, creator_id, f"Welcome to {room.name}", "ROOM_CREATED", None, conn
                )
                room.last_message_at = welcome.created_at
        except IntegrityError as e:
            db_logger.log_error("create_room", e)
            raise Conflict(f"Chat room already exists for this {ref.kind.value}")

        db_logger.log_create("ChatRoom", {
            "id": room.id,
            "entity": f"{ref.kind.value}#{ref.id}",
            "participants": [creator_id] + others,
        })

        await self.cache.delete_user_rooms(creator_id, *others)

        return {
            **self.serialize_room(room),
            "participants": await self._participants_payload(room.id),
        }

    async def generate_room(
            self,
            kind: EntityType,
            entity_id: int,
            name: str,
            description: Optional[str],
            user_id: int,
    ):
        """ساخت خودکار اتاق بعد از ساخت یک موجودیت"""
        room = await self.create_room(
            creator_id=user_id,
            name=name[:100] if name else None,
            description=description or f"Chat room for {name} {kind.value.lower()}",
            room_type=RoomType.GROUP,
            entity_type=kind,
            entity_id=entity_id,
        )
        member_ids = [p["user_id"] for p in room["participants"]]
        await self.broadcaster.notify_users(member_ids, "chat_room_created", room)
        db_logger.logger.info(f"✅ Created chat room {room['id']} for {kind.value} {entity_id}")
        return room

    # --------------------------------------
    # لیست اتاق‌های کاربر + آخرین پیام + تعداد خوانده‌نشده
    # --------------------------------------
    async def list_rooms(self, user_id: int):
        cached = await self.cache.get_user_rooms(user_id)
        if cached is not None:
            return cached

        participations = await ChatParticipant.filter(
            user_id=user_id,
            status=ParticipantStatus.ACTIVE,
        )
        by_room = {p.chat_room_id: p for p in participations}

        rooms = await ChatRoom.filter(
            id__in=list(by_room.keys()), is_active=True
        ).order_by("-last_message_at", "-id")

        result = []
        for room in rooms:
            me = by_room[room.id]

            last_msg = await self._message_query(
                ChatMessage.filter(chat_room_id=room.id)
            ).order_by("-created_at", "-id").first()

            unread = ChatMessage.filter(chat_room_id=room.id).exclude(sender_id=user_id)
            if me.last_read_at:
                unread = unread.filter(created_at__gt=me.last_read_at)

            result.append({
                **self.serialize_room(room),
                "participants": await self._participants_payload(room.id),
                "last_message": self.serialize_message(last_msg) if last_msg else None,
                "unread_count": await unread.count(),
            })

        await self.cache.set_user_rooms(user_id, result)
        db_logger.logger.debug(f"Retrieved {len(result)} chat rooms for user {user_id}")
        return result

    # --------------------------------------
    # دریافت یک اتاق
    # --------------------------------------
    async def get_room(self, user_id: int, room_id: int):
        await self._require_participant(room_id, user_id)

        room_data = await self.cache.get_room(room_id)
        if room_data is None:
            room_data = self.serialize_room(await self._get_room(room_id))
            await self.cache.set_room(room_id, room_data)

        return {**room_data, "participants": await self._participants_payload(room_id)}

    async def update_room(
            self,
            room_id: int,
            user_id: int,
            name: str = None,
            description: str = None,
            is_archived: bool = None,
    ):
        await self._require_admin(room_id, user_id)
        room = await self._get_room(room_id)

        changes = {}
        if name:
            room.name = name
            changes["name"] = name
        if description is not None:
            room.description = description
            changes["description"] = description
        if is_archived is not None:
            room.is_archived = is_archived
            room.archived_at = timezone.now() if is_archived else None
            changes["is_archived"] = is_archived

        await room.save()
        db_logger.log_update("ChatRoom", room_id, changes)

        await self.cache.delete_room(room_id)
        await self.cache.delete_user_rooms(*await self._active_user_ids(room_id))

        payload = self.serialize_room(room)
        await self.broadcaster.broadcast(room_id, "chat_room_updated", payload)
        return payload

    # --------------------------------------
    # ارسال پیام جدید
    # --------------------------------------
    async def send_message(
            self,
            room_id: int,
            sender_id: int,
            content: str,
            content_type=ContentType.TEXT,
            reply_to_id: int = None,
            metadata: dict = None,
    ):
        participant = await self._require_participant(room_id, sender_id)
        room = await self._get_room(room_id)
        if room.is_archived:
            raise Conflict("Chat room is archived")

        content = self._validate_content(content)
        content_type = ContentType(content_type)
        if content_type == ContentType.SYSTEM:
            raise ValidationError("System messages cannot be sent by users")

        if reply_to_id is not None:
            if not await ChatMessage.exists(id=reply_to_id, chat_room_id=room_id):
                raise ValidationError("Reply target is not in this chat room")

        try:
            async with in_transaction() as conn:
                msg = await ChatMessage.create(
                    chat_room_id=room_id,
                    sender_id=sender_id,
                    content=content,
                    content_type=content_type,
                    reply_to_id=reply_to_id,
                    metadata=metadata,
                    using_db=conn,
                )
                await self._advance_last_message_at(room_id, msg.created_at, conn)

                # فرستنده پیام خودش را خوانده است
                await ChatParticipant.filter(id=participant.id).using_db(conn).update(
                    last_read_message_id=msg.id,
                    last_read_at=msg.created_at,
                )
        except Exception as e:
            db_logger.log_error("send_message", e)
            raise

        db_logger.log_create("ChatMessage", {
            "id": msg.id,
            "chat_room_id": room_id,
            "sender_id": sender_id,
            "content_type": content_type.value,
            "content_len": len(content),
        })

        serialized = self.serialize_message(await self._load_message(msg.id))
        await self._invalidate_room_activity(room_id)
        await self.broadcaster.broadcast(room_id, "new_message", serialized)
        return serialized

    # --------------------------------------
    # دریافت پیام‌ها (صفحه‌ای یا با cursor)
    # --------------------------------------
    async def fetch_messages(
            self,
            room_id: int,
            user_id: int,
            page: int = 1,
            limit: int = None,
            before: datetime = None,
            before_id: int = None,
    ):
        participant = await self._require_participant(room_id, user_id)

        limit = limit or settings.MESSAGES_PAGE_SIZE
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        limit = min(limit, settings.MESSAGES_MAX_PAGE_SIZE)

        base = ChatMessage.filter(chat_room_id=room_id, is_deleted=False)

        if before is None:
            payload = await self.cache.get_messages(room_id, page, limit)
            if payload is None:
                total = await base.count()
                rows = await self._message_query(base).order_by("-created_at", "-id") \
                    .offset((page - 1) * limit).limit(limit)
                payload = {
                    "messages": [self.serialize_message(m) for m in reversed(rows)],
                    "pagination": {
                        "total": total,
                        "page": page,
                        "limit": limit,
                        "pages": (total + limit - 1) // limit,
                    },
                }
                await self.cache.set_messages(room_id, page, limit, payload)
        else:
            if timezone.is_naive(before):
                before = timezone.make_aware(before, "UTC")
            # cursor = (created_at, id)؛ پیام‌های هم‌زمان با id از هم جدا می‌شوند
            older = Q(created_at__lt=before)
            if before_id is not None:
                older = older | Q(created_at=before, id__lt=before_id)
            rows = await self._message_query(base.filter(older)) \
                .order_by("-created_at", "-id").limit(limit + 1)
            has_more = len(rows) > limit
            messages = [self.serialize_message(m) for m in reversed(rows[:limit])]
            payload = {
                "messages": messages,
                "has_more": has_more,
                "next_before": messages[0]["created_at"] if messages else None,
                "next_before_id": messages[0]["id"] if messages else None,
            }

        if payload["messages"]:
            await self._advance_read_pointer(participant, payload["messages"][-1]["id"])

        return payload

    # --------------------------------------
    # مدیریت اعضا
    # --------------------------------------
    async def add_participant(self, room_id: int, acting_user_id: int, target_user_id: int):
        await self._require_admin(room_id, acting_user_id)
        room = await self._get_room(room_id)

        target = await User.get_or_none(id=target_user_id, is_active=True)
        if not target:
            raise NotFound("User not found")

        if room.is_archived:
            raise Conflict("Chat room is archived")

        try:
            async with in_transaction() as conn:
                participant = await ChatParticipant.filter(
                    chat_room_id=room_id, user_id=target_user_id
                ).select_for_update().using_db(conn).first()

                if participant and participant.status == ParticipantStatus.ACTIVE:
                    raise Conflict("User is already a participant in this chat room")

                if participant:
                    participant.status = ParticipantStatus.ACTIVE
                    participant.is_admin = False
                    await participant.save(using_db=conn, update_fields=["status", "is_admin"])
                    action, text = "PARTICIPANT_READDED", f"{target.full_name} was added back to the chat"
                else:
                    participant = await ChatParticipant.create(
                        chat_room_id=room_id, user_id=target_user_id, is_admin=False, using_db=conn
                    )
                    action, text = "PARTICIPANT_ADDED", f"Added {target.full_name} to the chat"

                system_msg = await self._create_system_message(
                    room_id, acting_user_id, text, action, target_user_id, conn
                )
        except IntegrityError as e:
            db_logger.log_error("add_participant", e)
            raise Conflict("User is already a participant in this chat room")

        db_logger.log_update("ChatParticipant", participant.id, {"status": "ACTIVE", "action": action})

        await self.cache.invalidate_participants(room_id)
        await self._invalidate_room_activity(room_id, target_user_id)

        await participant.fetch_related("user")
        payload = self.serialize_participant(participant)
        await self.broadcaster.broadcast(room_id, "participant_added", {
            "chat_room_id": room_id,
            "participant": payload,
        })
        await self._broadcast_system_message(system_msg)
        return payload

    async def remove_participant(self, room_id: int, acting_user_id: int, target_user_id: int):
        acting = await self._require_participant(room_id, acting_user_id)
        is_self = acting_user_id == target_user_id
        if not is_self and not acting.is_admin:
            raise Forbidden("You do not have permission to remove this participant")

        await self._get_room(room_id)
        target_user = await User.get_or_none(id=target_user_id)

        async with in_transaction() as conn:
            admins = await self._locked_admins(room_id, conn)
            if not is_self and acting_user_id not in {a.user_id for a in admins}:
                raise Forbidden("You do not have permission to remove this participant")

            target = await ChatParticipant.filter(
                chat_room_id=room_id, user_id=target_user_id, status=ParticipantStatus.ACTIVE
            ).select_for_update().using_db(conn).first()
            if not target or not target_user:
                raise NotFound("Participant not found")

            # تعداد ادمین‌ها داخل همان تراکنش دوباره شمرده می‌شود
            if target.is_admin and len(admins) <= 1:
                raise Conflict("Cannot remove the last admin from the chat room")

            target.status = ParticipantStatus.LEFT
            target.is_admin = False
            await target.save(using_db=conn, update_fields=["status", "is_admin"])

            if is_self:
                action, text = "PARTICIPANT_LEFT", f"{target_user.full_name} left the chat"
            else:
                action, text = "PARTICIPANT_REMOVED", f"Removed {target_user.full_name} from the chat"
            system_msg = await self._create_system_message(
                room_id, acting_user_id, text, action, target_user_id, conn
            )

        db_logger.log_update("ChatParticipant", target.id, {"status": "LEFT", "action": action})

        await self.cache.invalidate_participants(room_id)
        await self._invalidate_room_activity(room_id, target_user_id)

        await self.broadcaster.broadcast(room_id, "participant_removed", {
            "chat_room_id": room_id,
            "user_id": target_user_id,
            "removed_by": acting_user_id,
        })
        await self._broadcast_system_message(system_msg)
        self.broadcaster.drop_user(room_id, target_user_id)

        return {"chat_room_id": room_id, "user_id": target_user_id, "status": ParticipantStatus.LEFT.value}

    async def promote_admin(self, room_id: int, acting_user_id: int, target_user_id: int):
        return await self._set_admin(room_id, acting_user_id, target_user_id, True)

    async def demote_admin(self, room_id: int, acting_user_id: int, target_user_id: int):
        return await self._set_admin(room_id, acting_user_id, target_user_id, False)

    async def _set_admin(self, room_id: int, acting_user_id: int, target_user_id: int, make_admin: bool):
        await self._require_admin(room_id, acting_user_id)
        await self._get_room(room_id)
        target_user = await User.get_or_none(id=target_user_id)

        async with in_transaction() as conn:
            admins = await self._locked_admins(room_id, conn)
            if acting_user_id not in {a.user_id for a in admins}:
                raise Forbidden("You do not have permission to manage admins in this chat room")

            target = await ChatParticipant.filter(
                chat_room_id=room_id, user_id=target_user_id, status=ParticipantStatus.ACTIVE
            ).using_db(conn).first()
            if not target or not target_user:
                raise NotFound("Participant not found")

            if make_admin:
                if target.is_admin:
                    raise Conflict("User is already an admin")
                action, text = "ADMIN_GRANTED", f"{target_user.full_name} is now an admin"
            else:
                if not target.is_admin:
                    raise Conflict("User is not an admin")
                if len(admins) <= 1:
                    raise Conflict("Cannot remove the last admin from the chat room")
                action, text = "ADMIN_REVOKED", f"{target_user.full_name} is no longer an admin"

            target.is_admin = make_admin
            await target.save(using_db=conn, update_fields=["is_admin"])
            system_msg = await self._create_system_message(
                room_id, acting_user_id, text, action, target_user_id, conn
            )

        db_logger.log_update("ChatParticipant", target.id, {"is_admin": make_admin})

        await self.cache.invalidate_participants(room_id)
        await self._invalidate_room_activity(room_id)

        payload = {"chat_room_id": room_id, "user_id": target_user_id, "is_admin": make_admin}
        await self.broadcaster.broadcast(room_id, "admin_updated", payload)
        await self._broadcast_system_message(system_msg)
        return payload

    # --------------------------------------
    # پین کردن پیام‌ها
    # --------------------------------------
    async def pin_message(self, room_id: int, message_id: int, user_id: int):
        await self._require_admin(room_id, user_id)

        if not await ChatMessage.exists(id=message_id, chat_room_id=room_id, is_deleted=False):
            raise NotFound("Message not found in this chat room")

        if await PinnedMessage.exists(chat_room_id=room_id, message_id=message_id):
            raise Conflict("Message is already pinned")

        try:
            pin = await PinnedMessage.create(
                chat_room_id=room_id, message_id=message_id, pinned_by_id=user_id
            )
        except IntegrityError:
            raise Conflict("Message is already pinned")

        db_logger.log_create("PinnedMessage", {"id": pin.id, "message_id": message_id, "by": user_id})

        pin = await self._pin_query(PinnedMessage.filter(id=pin.id)).first()
        payload = self.serialize_pin(pin)
        await self.broadcaster.broadcast(room_id, "message_pinned", payload)
        return payload

    async def unpin_message(self, room_id: int, message_id: int, user_id: int):
        participant = await self._require_participant(room_id, user_id)

        pin = await PinnedMessage.get_or_none(chat_room_id=room_id, message_id=message_id)
        if not pin:
            raise NotFound("Pinned message not found")

        if not participant.is_admin and pin.pinned_by_id != user_id:
            raise Forbidden("You do not have permission to unpin messages in this chat room")

        await pin.delete()
        db_logger.log_delete("PinnedMessage", pin.id)

        payload = {"chat_room_id": room_id, "message_id": message_id}
        await self.broadcaster.broadcast(room_id, "message_unpinned", payload)
        return payload

    async def list_pins(self, room_id: int, user_id: int):
        await self._require_participant(room_id, user_id)
        pins = await self._pin_query(
            PinnedMessage.filter(chat_room_id=room_id)
        ).order_by("-pinned_at", "-id")
        return [self.serialize_pin(pin) for pin in pins]

    # --------------------------------------
    # واکنش، ویرایش و حذف پیام
    # --------------------------------------
    async def react_to_message(self, message_id: int, user_id: int, reaction: str):
        reaction = (reaction or "").strip()
        if not reaction or len(reaction) > MAX_REACTION_LENGTH:
            raise ValidationError(f"Reaction must be 1-{MAX_REACTION_LENGTH} characters")

        message = await ChatMessage.get_or_none(id=message_id, is_deleted=False)
        if not message:
            raise NotFound("Message not found")
        await self._require_participant(message.chat_room_id, user_id)

        try:
            async with in_transaction() as conn:
                existing = await MessageReaction.filter(
                    message_id=message_id, user_id=user_id, reaction=reaction
                ).using_db(conn).first()
                if existing:
                    await existing.delete(using_db=conn)
                else:
                    await MessageReaction.create(
                        message_id=message_id, user_id=user_id, reaction=reaction, using_db=conn
                    )
        except IntegrityError:
            raise Conflict("Reaction already exists")

        reactions = await MessageReaction.filter(message_id=message_id) \
            .order_by("id").prefetch_related("user")
        serialized = [self.serialize_reaction(r) for r in reactions]

        await self.cache.invalidate_messages(message.chat_room_id)
        await self.broadcaster.broadcast(message.chat_room_id, "message_reaction_update", {
            "message_id": message_id,
            "chat_room_id": message.chat_room_id,
            "reactions": serialized,
        })
        return {"removed": existing is not None, "reactions": serialized}

    async def edit_message(self, message_id: int, user_id: int, content: str):
        content = self._validate_content(content)

        message = await ChatMessage.get_or_none(id=message_id, is_deleted=False)
        if not message:
            raise NotFound("Message not found")
        if message.sender_id != user_id:
            raise Forbidden("Not authorized to edit this message")
        if message.content_type == ContentType.SYSTEM:
            raise Forbidden("System messages cannot be edited")
        await self._require_participant(message.chat_room_id, user_id)

        message.content = content
        message.is_edited = True
        message.edited_at = timezone.now()
        await message.save(update_fields=["content", "is_edited", "edited_at"])
        db_logger.log_update("ChatMessage", message_id, {"content_len": len(content), "is_edited": True})

        serialized = self.serialize_message(await self._load_message(message_id))
        await self._invalidate_room_activity(message.chat_room_id)
        await self.broadcaster.broadcast(message.chat_room_id, "message_updated", serialized)
        return serialized

    async def delete_message(self, message_id: int, user_id: int):
        message = await ChatMessage.get_or_none(id=message_id, is_deleted=False)
        if not message:
            raise NotFound("Message not found")

        participant = await self._require_participant(message.chat_room_id, user_id)
        if message.sender_id != user_id and not participant.is_admin:
            raise Forbidden("Not authorized to delete this message")

        message.is_deleted = True
        message.content = DELETED_PLACEHOLDER
        message.deleted_at = timezone.now()
        message.deleted_by_id = user_id
        await message.save(update_fields=["is_deleted", "content", "deleted_at", "deleted_by_id"])
        db_logger.log_update("ChatMessage", message_id, {"is_deleted": True, "deleted_by": user_id})

        payload = {"message_id": message_id, "chat_room_id": message.chat_room_id}
        await self._invalidate_room_activity(message.chat_room_id)
        await self.broadcaster.broadcast(message.chat_room_id, "message_deleted", payload)
        return payload

    # --------------------------------------
    # رسید خواندن و اعلان پیوست
    # --------------------------------------
    async def mark_read(self, room_id: int, user_id: int, message_id: int, origin=None):
        participant = await self._require_participant(room_id, user_id)

        if not await ChatMessage.exists(id=message_id, chat_room_id=room_id):
            raise NotFound("Message not found in this chat room")

        now = timezone.now()
        await ChatParticipant.filter(id=participant.id).update(
            last_read_message_id=message_id,
            last_read_at=now,
        )
        await self.cache.delete_user_rooms(user_id)

        receipt = {
            "chat_room_id": room_id,
            "user_id": user_id,
            "last_read_message_id": message_id,
            "last_read_at": _iso(now),
        }
        await self.broadcaster.broadcast(room_id, "read_status_update", receipt, skip=origin)
        return receipt

    async def notify_attachment(self, room_id: int, user_id: int, message_id: int, attachments: list):
        await self._require_participant(room_id, user_id)

        message = await self._load_message(message_id, chat_room_id=room_id)
        if not message:
            raise NotFound("Message not found")

        payload = {
            "message_id": message_id,
            "chat_room_id": room_id,
            "attachments": attachments or [],
            "message": self.serialize_message(message),
        }
        await self.broadcaster.broadcast(room_id, "attachment_added", payload)
        return payload

    # --------------------------------------
    # کمک‌کننده‌های gateway
    # --------------------------------------
    async def verify_participant(self, room_id: int, user_id: int):
        return await self._require_participant(room_id, user_id)

    async def active_room_ids(self, user_id: int) -> List[int]:
        return await ChatParticipant.filter(
            user_id=user_id,
            status=ParticipantStatus.ACTIVE,
            chat_room__is_active=True,
        ).values_list("chat_room_id", flat=True)

    # --------------------------------------
    # کمک‌کننده‌های داخلی
    # --------------------------------------
    async def _get_room(self, room_id: int) -> ChatRoom:
        room = await ChatRoom.get_or_none(id=room_id, is_active=True)
        if not room:
            raise NotFound("Chat room not found")
        return room

    async def _require_participant(self, room_id: int, user_id: int) -> ChatParticipant:
        participant = await ChatParticipant.filter(
            chat_room_id=room_id,
            user_id=user_id,
            status=ParticipantStatus.ACTIVE,
            chat_room__is_active=True,
        ).first()
        if not participant:
            raise Forbidden("You are not a participant in this chat room")
        return participant

    async def _require_admin(self, room_id: int, user_id: int) -> ChatParticipant:
        participant = await self._require_participant(room_id, user_id)
        if not participant.is_admin:
            raise Forbidden("Only chat room admins can perform this action")
        return participant

    @staticmethod
    async def _locked_admins(room_id: int, conn) -> List[ChatParticipant]:
        return await ChatParticipant.filter(
            chat_room_id=room_id,
            is_admin=True,
            status=ParticipantStatus.ACTIVE,
        ).select_for_update().using_db(conn)

    async def _active_user_ids(self, room_id: int) -> List[int]:
        return await ChatParticipant.filter(
            chat_room_id=room_id, status=ParticipantStatus.ACTIVE
        ).values_list("user_id", flat=True)

    @staticmethod
    def _validate_content(content: str) -> str:
        if not content or not content.strip():
            raise ValidationError("Message content cannot be empty")
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValidationError(f"Message content cannot exceed {MAX_CONTENT_LENGTH} characters")
        return content

    @staticmethod
    async def _advance_last_message_at(room_id: int, at: datetime, conn=None):
        # فقط رو به جلو
        await ChatRoom.filter(id=room_id).filter(
            Q(last_message_at__isnull=True) | Q(last_message_at__lt=at)
        ).using_db(conn).update(last_message_at=at)

    async def _create_system_message(
            self,
            room_id: int,
            actor_id: int,
            content: str,
            action: str,
            target_user_id: Optional[int],
            conn,
    ) -> ChatMessage:
        msg = await ChatMessage.create(
            chat_room_id=room_id,
            sender_id=actor_id,
            content=content,
            content_type=ContentType.SYSTEM,
            metadata={"action": action, "target_user_id": target_user_id},
            using_db=conn,
        )
        await self._advance_last_message_at(room_id, msg.created_at, conn)
        return msg

    async def _broadcast_system_message(self, msg: ChatMessage):
        serialized = self.serialize_message(await self._load_message(msg.id))
        await self.broadcaster.broadcast(msg.chat_room_id, "new_message", serialized)

    async def _advance_read_pointer(self, participant: ChatParticipant, message_id: int):
        if participant.last_read_message_id and participant.last_read_message_id >= message_id:
            return

        await ChatParticipant.filter(id=participant.id).update(
            last_read_message_id=message_id,
            last_read_at=timezone.now(),
        )
        await self.cache.delete_user_rooms(participant.user_id)

    async def _invalidate_room_activity(self, room_id: int, *extra_user_ids: int):
        """پیام جدید/تغییر یافته: صفحات پیام، متادیتای اتاق و لیست اتاق همه اعضا"""
        user_ids = set(await self._active_user_ids(room_id)) | set(extra_user_ids)
        await self.cache.invalidate_messages(room_id)
        await self.cache.delete_room(room_id)
        await self.cache.delete_user_rooms(*user_ids)

    async def _participants_payload(self, room_id: int):
        cached = await self.cache.get_participants(room_id)
        if cached is not None:
            return cached

        participants = await ChatParticipant.filter(
            chat_room_id=room_id, status=ParticipantStatus.ACTIVE
        ).order_by("joined_at", "id").prefetch_related("user")
        data = [self.serialize_participant(p) for p in participants]

        await self.cache.set_participants(room_id, data)
        return data

    @staticmethod
    def _message_query(query):
        return query.prefetch_related("sender", "reply_to__sender", "reactions__user")

    @staticmethod
    def _pin_query(query):
        return query.prefetch_related(
            "pinned_by",
            "message__sender",
            "message__reply_to__sender",
            "message__reactions__user",
        )

    async def _load_message(self, message_id: int, **filters) -> Optional[ChatMessage]:
        return await self._message_query(ChatMessage.filter(id=message_id, **filters)).first()

    # --------------------------------------
    # Serialize
    # --------------------------------------
    @staticmethod
    def serialize_user(user: Optional[User]):
        return user.to_dict() if user else None

    def serialize_room(self, room: ChatRoom):
        return {
            "id": room.id,
            "name": room.name,
            "description": room.description,
            "type": RoomType(room.type).value,
            "entity_type": EntityType(room.entity_type).value,
            "entity_id": room.entity_id,
            "is_active": room.is_active,
            "is_archived": room.is_archived,
            "archived_at": _iso(room.archived_at),
            "last_message_at": _iso(room.last_message_at),
            "created_at": _iso(room.created_at),
        }

    def serialize_participant(self, participant: ChatParticipant):
        return {
            "id": participant.id,
            "chat_room_id": participant.chat_room_id,
            "user_id": participant.user_id,
            "user": self.serialize_user(participant.user),
            "is_admin": participant.is_admin,
            "status": ParticipantStatus(participant.status).value,
            "last_read_message_id": participant.last_read_message_id,
            "last_read_at": _iso(participant.last_read_at),
            "joined_at": _iso(participant.joined_at),
        }

    def serialize_reaction(self, reaction: MessageReaction):
        return {
            "id": reaction.id,
            "message_id": reaction.message_id,
            "reaction": reaction.reaction,
            "user": self.serialize_user(reaction.user),
            "created_at": _iso(reaction.created_at),
        }

    def serialize_message(self, msg: ChatMessage):
        """پیام با فرستنده، پیش‌نمایش پاسخ و واکنش‌ها (نیاز به prefetch)"""
        reply = msg.reply_to
        return {
            "id": msg.id,
            "chat_room_id": msg.chat_room_id,
            "sender": self.serialize_user(msg.sender),
            "content": msg.content,
            "content_type": ContentType(msg.content_type).value,
            "reply_to": {
                "id": reply.id,
                "content": reply.content,
                "sender": self.serialize_user(reply.sender),
            } if reply else None,
            "metadata": msg.metadata,
            "is_edited": msg.is_edited,
            "edited_at": _iso(msg.edited_at),
            "is_deleted": msg.is_deleted,
            "deleted_at": _iso(msg.deleted_at),
            "reactions": [
                self.serialize_reaction(r) for r in sorted(msg.reactions, key=lambda r: r.id)
            ],
            "created_at": _iso(msg.created_at),
        }

    def serialize_pin(self, pin: PinnedMessage):
        return {
            "id": pin.id,
            "chat_room_id": pin.chat_room_id,
            "message": self.serialize_message(pin.message),
            "pinned_by": self.serialize_user(pin.pinned_by),
            "pinned_at": _iso(pin.pinned_at),
        }
