from fastapi import APIRouter, Depends
from models.ai import ChatRequest, ChatResponse
from models.rbac import UserProfile
from core.auth import check_permission, get_permission_service
from controllers import ai_controller
from controllers.permission_service import PermissionService

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, current_user: UserProfile = Depends(check_permission("project:read")), permissions: PermissionService = Depends(get_permission_service)):
    scope = await permissions.get_user_data_scope(current_user.uid)
    return await ai_controller.chat(request, scope)
