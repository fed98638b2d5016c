from fastapi import APIRouter, Depends, Query
from core.auth import check_permission
from models.audit import AuditPage
from models.rbac import UserProfile
from controllers import audit_controller

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=AuditPage)
async def get_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    module: str = Query(None),
    action: str = Query(None),
    uid: str = Query(None),
    date_from: str = Query(None, description="YYYY-MM-DD, inclusive"),
    date_to: str = Query(None, description="YYYY-MM-DD, inclusive"),
    current_user: UserProfile = Depends(check_permission("system:admin")),
):
    return await audit_controller.get_audit_logs(
        page=page, limit=limit, module=module, action=action,
        uid=uid, date_from=date_from, date_to=date_to,
    )
