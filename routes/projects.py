from fastapi import APIRouter, Depends, Request
from typing import Optional
from models.project import Project, ProjectCreate, ProjectStatusUpdate
from models.rbac import UserProfile, DataScope
from core.auth import check_permission, get_permission_service
from controllers import project_controller
from controllers.permission_service import PermissionService
from controllers.audit_controller import log_audit, get_client_ip as _ip

router = APIRouter(tags=["projects"])


async def _scope(current_user: UserProfile, permissions: PermissionService) -> DataScope:
    return await permissions.get_user_data_scope(current_user.uid)


@router.post("/projects", response_model=Project)
async def create_project(project_data: ProjectCreate, request: Request, current_user: UserProfile = Depends(check_permission("project:write"))):
    result = await project_controller.create_project(project_data, current_user)
    await log_audit(current_user, "CREATE", "projects", "project", f"Created project '{project_data.name}'", result.id, _ip(request))
    return result


@router.get("/projects")
async def get_projects(page: int = 1, limit: int = 10, status: Optional[str] = None, current_user: UserProfile = Depends(check_permission("project:read")), permissions: PermissionService = Depends(get_permission_service)):
    return await project_controller.get_projects(await _scope(current_user, permissions), page, limit, status)


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: str, current_user: UserProfile = Depends(check_permission("project:read")), permissions: PermissionService = Depends(get_permission_service)):
    return await project_controller.get_project(project_id, await _scope(current_user, permissions))


@router.put("/projects/{project_id}", response_model=Project)
async def update_project(project_id: str, project_data: ProjectCreate, request: Request, current_user: UserProfile = Depends(check_permission("project:write")), permissions: PermissionService = Depends(get_permission_service)):
    result = await project_controller.update_project(project_id, project_data, await _scope(current_user, permissions))
    await log_audit(current_user, "UPDATE", "projects", "project", f"Updated project '{project_data.name}'", project_id, _ip(request))
    return result


@router.patch("/projects/{project_id}/status", response_model=Project)
async def update_project_status(project_id: str, data: ProjectStatusUpdate, request: Request, current_user: UserProfile = Depends(check_permission("project:write")), permissions: PermissionService = Depends(get_permission_service)):
    result = await project_controller.update_project_status(project_id, data, await _scope(current_user, permissions))
    await log_audit(current_user, "UPDATE", "projects", "project", f"Changed project status to '{data.status}'", project_id, _ip(request))
    return result


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str, request: Request, current_user: UserProfile = Depends(check_permission("project:delete")), permissions: PermissionService = Depends(get_permission_service)):
    result = await project_controller.delete_project(project_id, await _scope(current_user, permissions))
    await log_audit(current_user, "DELETE", "projects", "project", "Deleted project", project_id, _ip(request))
    return result
