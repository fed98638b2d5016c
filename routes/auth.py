from fastapi import APIRouter, Depends, Request
from models.auth import UserRegister, UserLogin, Token, ProfileUpdate, MyPermissions, PermissionQuery, PermissionMap
from models.rbac import UserProfile, DataScope
from core.auth import get_current_user, get_permission_service
from controllers import auth_controller
from controllers.permission_service import PermissionService
from controllers.audit_controller import log_audit, get_client_ip as _ip

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=Token)
async def register(data: UserRegister, request: Request, permissions: PermissionService = Depends(get_permission_service)):
    result = await auth_controller.register(data, permissions)
    await log_audit(result.user, "CREATE", "auth", "user", "Registered account", result.user.uid, _ip(request))
    return result


@router.post("/login", response_model=Token)
async def login(credentials: UserLogin, request: Request, permissions: PermissionService = Depends(get_permission_service)):
    result = await auth_controller.login(credentials, permissions)
    await log_audit(result.user, "LOGIN", "auth", "session", "Logged in", ip_address=_ip(request))
    return result


@router.get("/me", response_model=UserProfile)
async def get_me(current_user: UserProfile = Depends(get_current_user)):
    return current_user


@router.patch("/profile", response_model=UserProfile)
async def update_profile(data: ProfileUpdate, request: Request, current_user: UserProfile = Depends(get_current_user)):
    result = await auth_controller.update_profile(current_user, data)
    await log_audit(current_user, "UPDATE", "auth", "profile", "Updated profile", current_user.uid, _ip(request))
    return result


@router.get("/permissions", response_model=MyPermissions)
async def get_my_permissions(current_user: UserProfile = Depends(get_current_user), permissions: PermissionService = Depends(get_permission_service)):
    return await auth_controller.get_my_permissions(current_user, permissions)


@router.post("/permissions/check", response_model=PermissionMap)
async def check_my_permissions(query: PermissionQuery, current_user: UserProfile = Depends(get_current_user), permissions: PermissionService = Depends(get_permission_service)):
    return PermissionMap(permissions=await permissions.check_user_permissions(current_user.uid, query.permission_ids))


@router.get("/scope", response_model=DataScope)
async def get_my_scope(current_user: UserProfile = Depends(get_current_user), permissions: PermissionService = Depends(get_permission_service)):
    return await permissions.get_user_data_scope(current_user.uid)
