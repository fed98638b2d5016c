from fastapi import HTTPException
from typing import Optional

from database import db
from models.project import Project, ProjectCreate, ProjectStatusUpdate
from models.rbac import DataScope, UserProfile


def _visible(project: dict, scope: DataScope) -> bool:
    return scope.scope == "all" or project.get("created_by") == scope.uid


async def create_project(project_data: ProjectCreate, current_user: UserProfile) -> Project:
    existing = await db.projects.find_one({"code": project_data.code}, {"_id": 0})
    if existing:
        raise HTTPException(status_code=400, detail=f"Project code '{project_data.code}' already exists")
    project = Project(**project_data.model_dump(), created_by=current_user.uid)
    await db.projects.insert_one(project.model_dump())
    return project


async def get_projects(scope: DataScope, page: int = 1, limit: int = 10, status: Optional[str] = None) -> dict:
    query = {}
    if scope.scope == "own":
        query["created_by"] = scope.uid
    if status and status != 'all':
        query['status'] = status
    total = await db.projects.count_documents(query)
    skip = (page - 1) * limit
    data = await db.projects.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    pages = max(1, (total + limit - 1) // limit)
    return {"data": data, "total": total, "page": page, "pages": pages, "limit": limit}


async def get_project(project_id: str, scope: DataScope) -> Project:
    project = await db.projects.find_one({"id": project_id}, {"_id": 0})
    # out-of-scope projects look the same as missing ones
    if not project or not _visible(project, scope):
        raise HTTPException(status_code=404, detail="Project not found")
    return Project(**project)


async def update_project(project_id: str, project_data: ProjectCreate, scope: DataScope) -> Project:
    existing = await get_project(project_id, scope)
    if project_data.code != existing.code:
        dup = await db.projects.find_one({"code": project_data.code, "id": {"$ne": project_id}}, {"_id": 0})
        if dup:
            raise HTTPException(status_code=400, detail=f"Project code '{project_data.code}' already exists")
    await db.projects.update_one({"id": project_id}, {"$set": project_data.model_dump()})
    updated = await db.projects.find_one({"id": project_id}, {"_id": 0})
    return Project(**updated)


async def update_project_status(project_id: str, data: ProjectStatusUpdate, scope: DataScope) -> Project:
    await get_project(project_id, scope)
    await db.projects.update_one({"id": project_id}, {"$set": {"status": data.status}})
    return Project(**await db.projects.find_one({"id": project_id}, {"_id": 0}))


async def delete_project(project_id: str, scope: DataScope) -> dict:
    await get_project(project_id, scope)
    await db.projects.delete_one({"id": project_id})
    return {"message": "Project deleted"}
