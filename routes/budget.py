from fastapi import APIRouter, Depends, HTTPException, Request
from typing import List, Optional
from models.budget import (
    ProjectBudget, BudgetCreate, BudgetUpdate, BudgetItem, BudgetItemCreate, BudgetItemUpdate,
    CostRecord, CostRecordCreate, CostRecordUpdate, BudgetAlert, AlertTransition, BudgetStats,
)
from models.rbac import UserProfile
from core.auth import check_permission, get_budget_service, get_permission_service
from controllers import project_controller
from controllers.budget_controller import BudgetService
from controllers.permission_service import PermissionService
from controllers.audit_controller import log_audit, get_client_ip as _ip

router = APIRouter(tags=["budget"])


async def _check_scope(project_id: str, current_user: UserProfile, permissions: PermissionService) -> None:
    """404 unless the project exists and is inside the caller's data scope."""
    scope = await permissions.get_user_data_scope(current_user.uid)
    await project_controller.get_project(project_id, scope)


# ── Budgets ───────────────────────────────────────────────

@router.post("/budgets", response_model=ProjectBudget)
async def create_budget(data: BudgetCreate, request: Request, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(data.project_id, current_user, permissions)
    result = await budgets.create_budget(data, current_user.uid)
    await log_audit(current_user, "CREATE", "budget", "budget", f"Created budget '{data.name}' ({data.total_budget:,.2f} {data.currency})", result.id, _ip(request))
    return result


@router.get("/projects/{project_id}/budget", response_model=ProjectBudget)
async def get_project_budget(project_id: str, current_user: UserProfile = Depends(check_permission("finance:read")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(project_id, current_user, permissions)
    budget = await budgets.get_project_budget(project_id)
    if budget is None:
        raise HTTPException(status_code=404, detail="Project has no budget")
    return budget


@router.patch("/budgets/{budget_id}", response_model=ProjectBudget)
async def update_budget(budget_id: str, data: BudgetUpdate, request: Request, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(budget_id=budget_id), current_user, permissions)
    result = await budgets.update_budget(budget_id, data, current_user.uid)
    await log_audit(current_user, "UPDATE", "budget", "budget", "Updated budget", budget_id, _ip(request))
    return result


@router.delete("/budgets/{budget_id}")
async def delete_budget(budget_id: str, request: Request, current_user: UserProfile = Depends(check_permission("finance:delete")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(budget_id=budget_id), current_user, permissions)
    await budgets.delete_budget(budget_id)
    await log_audit(current_user, "DELETE", "budget", "budget", "Deleted budget", budget_id, _ip(request))
    return {"message": "Budget deleted"}


# ── Budget items ──────────────────────────────────────────

@router.post("/budgets/{budget_id}/items", response_model=BudgetItem)
async def create_budget_item(budget_id: str, data: BudgetItemCreate, request: Request, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(budget_id=budget_id), current_user, permissions)
    result = await budgets.create_budget_item(budget_id, data)
    await log_audit(current_user, "CREATE", "budget", "budget_item", f"Allocated {data.allocated_amount:,.2f} to '{data.name}'", result.id, _ip(request))
    return result


@router.get("/budgets/{budget_id}/items", response_model=List[BudgetItem])
async def get_budget_items(budget_id: str, current_user: UserProfile = Depends(check_permission("finance:read")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(budget_id=budget_id), current_user, permissions)
    return await budgets.get_budget_items(budget_id)


@router.patch("/budget-items/{item_id}", response_model=BudgetItem)
async def update_budget_item(item_id: str, data: BudgetItemUpdate, request: Request, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(item_id=item_id), current_user, permissions)
    result = await budgets.update_budget_item(item_id, data)
    await log_audit(current_user, "UPDATE", "budget", "budget_item", "Updated budget item", item_id, _ip(request))
    return result


@router.delete("/budget-items/{item_id}")
async def delete_budget_item(item_id: str, request: Request, current_user: UserProfile = Depends(check_permission("finance:delete")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(item_id=item_id), current_user, permissions)
    await budgets.delete_budget_item(item_id)
    await log_audit(current_user, "DELETE", "budget", "budget_item", "Deleted budget item", item_id, _ip(request))
    return {"message": "Budget item deleted"}


# ── Cost records ──────────────────────────────────────────

@router.post("/projects/{project_id}/costs", response_model=CostRecord)
async def record_cost(project_id: str, data: CostRecordCreate, request: Request, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(project_id, current_user, permissions)
    result = await budgets.record_cost(project_id, data, current_user.uid)
    await log_audit(current_user, "CREATE", "budget", "cost_record", f"Recorded cost {data.amount:,.2f}", result.id, _ip(request))
    return result


@router.get("/projects/{project_id}/costs", response_model=List[CostRecord])
async def get_cost_records(project_id: str, current_user: UserProfile = Depends(check_permission("finance:read")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(project_id, current_user, permissions)
    return await budgets.get_cost_records(project_id)


@router.patch("/costs/{cost_id}", response_model=CostRecord)
async def update_cost_record(cost_id: str, data: CostRecordUpdate, request: Request, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(cost_id=cost_id), current_user, permissions)
    result = await budgets.update_cost_record(cost_id, data, current_user.uid)
    await log_audit(current_user, "UPDATE", "budget", "cost_record", "Updated cost record", cost_id, _ip(request))
    return result


@router.delete("/costs/{cost_id}")
async def delete_cost_record(cost_id: str, request: Request, current_user: UserProfile = Depends(check_permission("finance:delete")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(cost_id=cost_id), current_user, permissions)
    await budgets.delete_cost_record(cost_id)
    await log_audit(current_user, "DELETE", "budget", "cost_record", "Deleted cost record", cost_id, _ip(request))
    return {"message": "Cost record deleted"}


# ── Stats & alerts ────────────────────────────────────────

@router.get("/projects/{project_id}/budget/stats", response_model=BudgetStats)
async def get_budget_stats(project_id: str, current_user: UserProfile = Depends(check_permission("finance:read")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(project_id, current_user, permissions)
    return await budgets.get_budget_stats(project_id)


@router.get("/projects/{project_id}/alerts", response_model=List[BudgetAlert])
async def get_budget_alerts(project_id: str, status: Optional[str] = None, current_user: UserProfile = Depends(check_permission("finance:read")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(project_id, current_user, permissions)
    return await budgets.get_budget_alerts(project_id, status)


@router.post("/projects/{project_id}/alerts/check", response_model=List[BudgetAlert])
async def check_budget_alerts(project_id: str, request: Request, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(project_id, current_user, permissions)
    created = await budgets.check_and_create_alerts(project_id)
    for alert in created:
        await log_audit(current_user, "CREATE", "budget", "alert", alert.message, alert.id, _ip(request))
    return created


@router.post("/alerts/{alert_id}/acknowledge", response_model=BudgetAlert)
async def acknowledge_alert(alert_id: str, request: Request, data: Optional[AlertTransition] = None, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(alert_id=alert_id), current_user, permissions)
    result = await budgets.acknowledge_alert(alert_id, current_user.uid, data.notes if data else None)
    await log_audit(current_user, "UPDATE", "budget", "alert", "Acknowledged alert", alert_id, _ip(request))
    return result


@router.post("/alerts/{alert_id}/resolve", response_model=BudgetAlert)
async def resolve_alert(alert_id: str, request: Request, data: Optional[AlertTransition] = None, current_user: UserProfile = Depends(check_permission("finance:write")), budgets: BudgetService = Depends(get_budget_service), permissions: PermissionService = Depends(get_permission_service)):
    await _check_scope(await budgets.project_id_of(alert_id=alert_id), current_user, permissions)
    result = await budgets.resolve_alert(alert_id, current_user.uid, data.notes if data else None)
    await log_audit(current_user, "UPDATE", "budget", "alert", "Resolved alert", alert_id, _ip(request))
    return result
