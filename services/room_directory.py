from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

from core.logger import db_logger
from models.chat_room import EntityType
from models.department import Department
from models.organization import Organization
from models.project import Project, Task
from models.team import Team
from models.user import User

MemberResolver = Callable[[int], Awaitable[Optional[Set[int]]]]


@dataclass(frozen=True)
class EntityRef:
    """موجودیت صاحب یک اتاق چت"""
    kind: EntityType
    id: int


async def _organization_members(entity_id: int) -> Optional[Set[int]]:
    org = await Organization.get_or_none(id=entity_id, deleted_at=None)
    if not org:
        return None

    user_ids = await User.filter(organization_id=org.id, is_active=True).values_list("id", flat=True)
    members = set(user_ids)
    if org.owner_id:
        members.add(org.owner_id)
    return members


async def _department_members(entity_id: int) -> Optional[Set[int]]:
    dept = await Department.get_or_none(id=entity_id, deleted_at=None)
    if not dept:
        return None
    return set(await dept.members.filter(is_active=True).values_list("id", flat=True))


async def _team_members(entity_id: int) -> Optional[Set[int]]:
    team = await Team.get_or_none(id=entity_id, deleted_at=None)
    if not team:
        return None
    return set(await team.members.filter(is_active=True).values_list("id", flat=True))


async def _project_members(entity_id: int) -> Optional[Set[int]]:
    project = await Project.get_or_none(id=entity_id, deleted_at=None)
    if not project:
        return None

    members = set(await project.members.filter(is_active=True).values_list("id", flat=True))
    if project.owner_id:
        members.add(project.owner_id)
    return members


async def _task_members(entity_id: int) -> Optional[Set[int]]:
    task = await Task.get_or_none(id=entity_id, deleted_at=None).prefetch_related("project")
    if not task:
        return None

    candidates = (task.creator_id, task.assignee_id, task.project.owner_id if task.project else None)
    return {uid for uid in candidates if uid}


class RoomDirectory:
    """
    یافتن اعضای موجودیت صاحب اتاق (سازمان، دپارتمان، تیم، پروژه، تسک).

    برای هر نوع موجودیت یک resolver ثبت می‌شود؛ None یعنی موجودیت وجود ندارد.
    """

    def __init__(self):
        self._resolvers: Dict[EntityType, MemberResolver] = {
            EntityType.ORGANIZATION: _organization_members,
            EntityType.DEPARTMENT: _department_members,
            EntityType.TEAM: _team_members,
            EntityType.PROJECT: _project_members,
            EntityType.TASK: _task_members,
        }

    def register(self, kind: EntityType, resolver: MemberResolver):
        self._resolvers[kind] = resolver

    async def resolve_members(self, ref: EntityRef) -> Optional[Set[int]]:
        resolver = self._resolvers.get(ref.kind)
        if resolver is None:
            db_logger.logger.warning(f"No member resolver for {ref.kind}")
            return None

        members = await resolver(ref.id)
        db_logger.logger.debug(
            f"Resolved {ref.kind.value}#{ref.id}: "
            f"{'missing' if members is None else f'{len(members)} members'}"
        )
        return members
