from fastapi import APIRouter, Depends, Request
from typing import Dict, List
from models.rbac import (
    Role, RoleCreate, RolePermissionsUpdate, RoleNameUpdate, RoleDescriptionUpdate,
    Permission, PermissionCheck, PermissionCoverage, UserProfile, UserRole, UserRoleAssign,
    DataScope, DataScopeUpdate,
)
from core.auth import check_permission, get_permission_service
from core.permission_matrix import analyze_permission_coverage
from controllers.permission_service import PermissionService
from controllers.audit_controller import log_audit, get_client_ip as _ip

router = APIRouter(tags=["rbac"])


# ── Roles ─────────────────────────────────────────────────

@router.get("/roles", response_model=List[Role])
async def get_roles(current_user: UserProfile = Depends(check_permission("user:read")), permissions: PermissionService = Depends(get_permission_service)):
    return await permissions.get_all_roles()


@router.get("/roles/{role_id}", response_model=Role)
async def get_role(role_id: str, current_user: UserProfile = Depends(check_permission("user:read")), permissions: PermissionService = Depends(get_permission_service)):
    return await permissions.get_role(role_id)


@router.post("/roles", response_model=Role)
async def create_role(role_data: RoleCreate, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    role_id = await permissions.create_custom_role(role_data, current_user.uid)
    await log_audit(current_user, "CREATE", "rbac", "role", f"Created role '{role_data.name}'", role_id, _ip(request))
    return await permissions.get_role(role_id)


@router.put("/roles/{role_id}/permissions", response_model=Role)
async def update_role_permissions(role_id: str, data: RolePermissionsUpdate, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    result = await permissions.update_role_permissions(role_id, data.permissions, current_user.uid)
    await log_audit(current_user, "UPDATE", "rbac", "role", f"Set {len(data.permissions)} permissions", role_id, _ip(request))
    return result


@router.patch("/roles/{role_id}/name", response_model=Role)
async def update_role_name(role_id: str, data: RoleNameUpdate, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    result = await permissions.update_role_name(role_id, data.name, current_user.uid)
    await log_audit(current_user, "UPDATE", "rbac", "role", f"Renamed role to '{data.name}'", role_id, _ip(request))
    return result


@router.patch("/roles/{role_id}/description", response_model=Role)
async def update_role_description(role_id: str, data: RoleDescriptionUpdate, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    result = await permissions.update_role_description(role_id, data.description, current_user.uid)
    await log_audit(current_user, "UPDATE", "rbac", "role", "Updated role description", role_id, _ip(request))
    return result


@router.delete("/roles/{role_id}")
async def delete_role(role_id: str, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    await permissions.delete_custom_role(role_id)
    await log_audit(current_user, "DELETE", "rbac", "role", "Deleted role", role_id, _ip(request))
    return {"message": "Role deleted"}


# ── Permissions ───────────────────────────────────────────

@router.get("/permissions", response_model=List[Permission])
async def get_permissions(current_user: UserProfile = Depends(check_permission("user:read")), permissions: PermissionService = Depends(get_permission_service)):
    return await permissions.get_all_permissions()


@router.get("/permissions/coverage", response_model=Dict[str, PermissionCoverage])
async def get_permission_coverage(current_user: UserProfile = Depends(check_permission("system:read")), permissions: PermissionService = Depends(get_permission_service)):
    return analyze_permission_coverage(await permissions.get_all_roles(), await permissions.get_all_permissions())


# ── Users ─────────────────────────────────────────────────

@router.get("/users", response_model=List[UserProfile])
async def get_users(current_user: UserProfile = Depends(check_permission("user:read")), permissions: PermissionService = Depends(get_permission_service)):
    return await permissions.get_all_users()


@router.get("/users/{uid}/permissions/{permission_id}", response_model=PermissionCheck)
async def check_user_permission(uid: str, permission_id: str, current_user: UserProfile = Depends(check_permission("user:read")), permissions: PermissionService = Depends(get_permission_service)):
    return await permissions.check_user_permission(uid, permission_id)


@router.put("/users/{uid}/role", response_model=UserRole)
async def assign_user_role(uid: str, data: UserRoleAssign, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    expires_at = data.expires_at.isoformat() if data.expires_at else None
    result = await permissions.assign_user_role(uid, data.role_id, current_user.uid, expires_at)
    await log_audit(current_user, "UPDATE", "rbac", "user_role", f"Assigned role '{data.role_id}'", uid, _ip(request))
    return result


@router.delete("/users/{uid}/role")
async def revoke_user_role(uid: str, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    await permissions.revoke_user_role(uid)
    await log_audit(current_user, "UPDATE", "rbac", "user_role", "Revoked role assignment", uid, _ip(request))
    return {"message": "Role assignment revoked"}


@router.put("/users/{uid}/scope", response_model=DataScope)
async def set_user_scope(uid: str, data: DataScopeUpdate, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), permissions: PermissionService = Depends(get_permission_service)):
    result = await permissions.set_user_data_scope(uid, data.scope)
    await log_audit(current_user, "UPDATE", "rbac", "data_scope", f"Set data scope to '{data.scope}'", uid, _ip(request))
    return result
