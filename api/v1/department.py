from fastapi import APIRouter, Depends, status

from api.deps import require_role
from models.user import User
from schemas.chat import DepartmentCreate
from services.department_service import DepartmentService

router = APIRouter(prefix="/api/v1/departments", tags=["Departments"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_department(
        payload: DepartmentCreate,
        service: DepartmentService = Depends(),
        current_user: User = Depends(require_role(["admin"]))
):
    """ایجاد دپارتمان جدید (فقط ادمین)؛ اتاق چت دپارتمان خودکار ساخته می‌شود"""
    dept = await service.create_department(
        payload.name,
        organization_id=payload.organization_id,
        creator_id=current_user.id,
        member_ids=payload.member_ids,
    )
    return {"success": True, "message": "Department created successfully", "data": dept}
