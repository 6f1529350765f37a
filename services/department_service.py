from typing import List

from tortoise.transactions import in_transaction

from core.exceptions import NotFound
from core.logger import db_logger
from models.chat_room import EntityType
from models.department import Department
from models.organization import Organization
from models.user import User
from services.entity_hooks import entity_events


class DepartmentService:

    events = entity_events

    async def create_department(
            self,
            name: str,
            organization_id: int,
            creator_id: int,
            member_ids: List[int] = None,
    ):
        """ایجاد دپارتمان جدید و اعلام آن به سرویس‌های دیگر (اتاق چت)"""
        db_logger.logger.info(f"Creating department: {name} (org={organization_id})")

        if not await Organization.exists(id=organization_id, deleted_at=None):
            raise NotFound("Organization not found")

        # سازنده همیشه عضو دپارتمان است
        ids = set(member_ids or []) | {creator_id}
        members = await User.filter(id__in=list(ids), is_active=True)

        async with in_transaction() as conn:
            dept = await Department.create(
                name=name,
                is_active=True,
                organization_id=organization_id,
                using_db=conn,
            )
            if members:
                await dept.members.add(*members, using_db=conn)

        db_logger.log_create("Department", {
            "id": dept.id,
            "name": name,
            "members": sorted(m.id for m in members)
        })

        await self.events.entity_created(EntityType.DEPARTMENT, dept.id, name, creator_id)

        return self.serialize(dept)

    def serialize(self, dept: Department):
        """تبدیل به dict"""
        return {
            "id": dept.id,
            "name": dept.name,
            "organization_id": dept.organization_id,
            "is_active": dept.is_active,
            "created_at": dept.created_at.isoformat()
        }
