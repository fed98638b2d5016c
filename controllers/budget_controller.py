import logging
from typing import Dict, List, Optional

from fastapi import HTTPException

from config import UTILIZATION_CRITICAL, UTILIZATION_WARNING, ALLOCATION_CRITICAL, ALLOCATION_WARNING
from core.timeutil import now_iso
from models.budget import (
    AlertStatus, BudgetAlert, BudgetCreate, BudgetItem, BudgetItemCreate, BudgetItemUpdate,
    BudgetStats, BudgetUpdate, CategoryStats, CostRecord, CostRecordCreate, CostRecordUpdate,
    ProjectBudget,
)

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from
ALERT_TRANSITIONS = {
    AlertStatus.ACKNOWLEDGED: [AlertStatus.ACTIVE],
    AlertStatus.RESOLVED: [AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED],
}


# ── Aggregation ───────────────────────────────────────────

def budget_utilization(spent: float, total: float) -> float:
    return spent / total * 100 if total > 0 else 0.0


def allocation_rate(allocated: float, total: float) -> float:
    return allocated / total * 100 if total > 0 else 0.0


def utilization_band(pct: float) -> str:
    if pct > UTILIZATION_CRITICAL:
        return "critical"
    if pct > UTILIZATION_WARNING:
        return "warning"
    return "healthy"


def allocation_band(pct: float) -> str:
    if pct > ALLOCATION_CRITICAL:
        return "critical"
    if pct > ALLOCATION_WARNING:
        return "warning"
    return "healthy"


def derive_alerts(project_id: str, utilization: float, allocation: float) -> List[BudgetAlert]:
    """Alerts implied by the current percentages. They are not persisted here."""
    alerts = []
    if utilization > UTILIZATION_CRITICAL:
        alerts.append(BudgetAlert(
            project_id=project_id, type="over_budget", severity="high",
            message=f"Budget utilization has reached {utilization:.1f}%",
        ))
    if allocation > ALLOCATION_CRITICAL:
        alerts.append(BudgetAlert(
            project_id=project_id, type="over_allocation", severity="medium",
            message=f"Budget allocation has reached {allocation:.1f}%",
        ))
    return alerts


def compute_budget_stats(budget: Optional[ProjectBudget], items: List[BudgetItem],
                         costs: List[CostRecord]) -> BudgetStats:
    if budget is None:
        return BudgetStats()

    total = budget.total_budget or 0.0
    allocated = sum(i.allocated_amount for i in items)
    spent = sum(c.amount for c in costs)
    committed = sum(c.amount for c in costs if c.status == "committed")
    utilization = budget_utilization(spent, total)
    allocation = allocation_rate(allocated, total)

    categories: Dict[str, CategoryStats] = {}
    for item in items:
        categories.setdefault(item.category, CategoryStats()).allocated += item.allocated_amount
    for cost in costs:
        stats = categories.setdefault(cost.category, CategoryStats())
        stats.spent += cost.amount
        if cost.status == "committed":
            stats.committed += cost.amount

    recent = sorted(costs, key=lambda c: c.date, reverse=True)[:10]

    return BudgetStats(
        total_budget=total,
        total_allocated=allocated,
        total_spent=spent,
        total_committed=committed,
        remaining_budget=total - spent,
        available_budget=total - allocated,
        budget_utilization=utilization,
        allocation_rate=allocation,
        utilization_band=utilization_band(utilization),
        allocation_band=allocation_band(allocation),
        category_stats=categories,
        recent_costs=recent,
        alerts=derive_alerts(budget.project_id, utilization, allocation),
    )


# ── Persistence ───────────────────────────────────────────

class BudgetService:
    """Budgets, budget items, cost records and budget alerts for projects."""

    def __init__(self, db):
        self.db = db

    # budgets

    async def create_budget(self, data: BudgetCreate, created_by: str) -> ProjectBudget:
        if not await self.db.projects.find_one({"id": data.project_id}):
            raise HTTPException(status_code=404, detail="Project not found")
        if await self.db.project_budgets.find_one({"project_id": data.project_id}):
            raise HTTPException(status_code=400, detail="Project already has a budget")
        budget = ProjectBudget(**data.model_dump(), created_by=created_by)
        await self.db.project_budgets.insert_one(budget.model_dump())
        return budget

    async def get_project_budget(self, project_id: str) -> Optional[ProjectBudget]:
        doc = await self.db.project_budgets.find_one({"project_id": project_id}, {"_id": 0})
        return ProjectBudget(**doc) if doc else None

    async def get_budget(self, budget_id: str) -> ProjectBudget:
        doc = await self.db.project_budgets.find_one({"id": budget_id}, {"_id": 0})
        if not doc:
            raise HTTPException(status_code=404, detail="Budget not found")
        return ProjectBudget(**doc)

    async def update_budget(self, budget_id: str, data: BudgetUpdate, updated_by: str) -> ProjectBudget:
        existing = await self.get_budget(budget_id)
        update = {k: v for k, v in data.model_dump().items() if v is not None}
        if not update:
            raise HTTPException(status_code=400, detail="No fields to update")
        if update.get("status") == "approved" and existing.status != "approved":
            update["approved_by"] = updated_by
            update["approved_at"] = now_iso()
        update["updated_at"] = now_iso()
        await self.db.project_budgets.update_one({"id": budget_id}, {"$set": update})
        return await self.get_budget(budget_id)

    async def delete_budget(self, budget_id: str) -> None:
        await self.get_budget(budget_id)
        item_ids = [i.id for i in await self.get_budget_items(budget_id)]
        if item_ids:
            await self._detach_costs({"budget_item_id": {"$in": item_ids}})
        await self.db.budget_items.delete_many({"budget_id": budget_id})
        await self.db.project_budgets.delete_one({"id": budget_id})

    # budget items

    async def create_budget_item(self, budget_id: str, data: BudgetItemCreate) -> BudgetItem:
        await self.get_budget(budget_id)
        item = BudgetItem(**data.model_dump(), budget_id=budget_id)
        await self.db.budget_items.insert_one(item.model_dump())
        return item

    async def get_budget_items(self, budget_id: str) -> List[BudgetItem]:
        docs = await self.db.budget_items.find({"budget_id": budget_id}, {"_id": 0}) \
            .sort("created_at", 1).to_list(1000)
        return [BudgetItem(**d) for d in docs]

    async def get_budget_item(self, item_id: str) -> BudgetItem:
        doc = await self.db.budget_items.find_one({"id": item_id}, {"_id": 0})
        if not doc:
            raise HTTPException(status_code=404, detail="Budget item not found")
        return BudgetItem(**doc)

    async def update_budget_item(self, item_id: str, data: BudgetItemUpdate) -> BudgetItem:
        await self.get_budget_item(item_id)
        update = {k: v for k, v in data.model_dump().items() if v is not None}
        if not update:
            raise HTTPException(status_code=400, detail="No fields to update")
        update["updated_at"] = now_iso()
        await self.db.budget_items.update_one({"id": item_id}, {"$set": update})
        return await self.get_budget_item(item_id)

    async def delete_budget_item(self, item_id: str) -> None:
        result = await self.db.budget_items.delete_one({"id": item_id})
        if result.deleted_count == 0:
            raise HTTPException(status_code=404, detail="Budget item not found")
        await self._detach_costs({"budget_item_id": item_id})

    async def _detach_costs(self, query: dict) -> None:
        # costs stay on the project but no longer count against a deleted line
        result = await self.db.cost_records.update_many(query, {"$unset": {"budget_item_id": ""}})
        if result.modified_count:
            logger.info(f"Detached {result.modified_count} cost records from deleted budget items")

    async def _refresh_item_totals(self, item_id: Optional[str]) -> None:
        if not item_id:
            return
        costs = await self.db.cost_records.find({"budget_item_id": item_id}, {"_id": 0}).to_list(10000)
        spent = sum(c.get("amount", 0) for c in costs)
        committed = sum(c.get("amount", 0) for c in costs if c.get("status") == "committed")
        await self.db.budget_items.update_one(
            {"id": item_id},
            {"$set": {"spent_amount": spent, "committed_amount": committed, "updated_at": now_iso()}},
        )

    # cost records

    async def record_cost(self, project_id: str, data: CostRecordCreate, recorded_by: str) -> CostRecord:
        budget = await self.get_project_budget(project_id)
        if not budget:
            raise HTTPException(status_code=404, detail="Project has no budget")
        if data.budget_item_id:
            item = await self.get_budget_item(data.budget_item_id)
            if item.budget_id != budget.id:
                raise HTTPException(status_code=400, detail="Budget item belongs to another project")
        record = CostRecord(**data.model_dump(), project_id=project_id, recorded_by=recorded_by)
        await self.db.cost_records.insert_one(record.model_dump())
        await self._refresh_item_totals(record.budget_item_id)
        return record

    async def get_cost_records(self, project_id: str) -> List[CostRecord]:
        docs = await self.db.cost_records.find({"project_id": project_id}, {"_id": 0}) \
            .sort("date", -1).to_list(10000)
        return [CostRecord(**d) for d in docs]

    async def get_cost_record(self, cost_id: str) -> CostRecord:
        doc = await self.db.cost_records.find_one({"id": cost_id}, {"_id": 0})
        if not doc:
            raise HTTPException(status_code=404, detail="Cost record not found")
        return CostRecord(**doc)

    async def update_cost_record(self, cost_id: str, data: CostRecordUpdate, updated_by: str) -> CostRecord:
        existing = await self.get_cost_record(cost_id)
        update = {k: v for k, v in data.model_dump().items() if v is not None}
        if not update:
            raise HTTPException(status_code=400, detail="No fields to update")
        if update.get("status") in ("invoiced", "paid") and not existing.approved_by:
            update["approved_by"] = updated_by
            update["approved_at"] = now_iso()
        update["updated_at"] = now_iso()
        await self.db.cost_records.update_one({"id": cost_id}, {"$set": update})
        await self._refresh_item_totals(existing.budget_item_id)
        return await self.get_cost_record(cost_id)

    async def delete_cost_record(self, cost_id: str) -> None:
        existing = await self.get_cost_record(cost_id)
        await self.db.cost_records.delete_one({"id": cost_id})
        await self._refresh_item_totals(existing.budget_item_id)

    # stats & alerts

    async def get_budget_stats(self, project_id: str) -> BudgetStats:
        try:
            budget = await self.get_project_budget(project_id)
            if budget is None:
                return BudgetStats()
            items = await self.get_budget_items(budget.id)
            costs = await self.get_cost_records(project_id)
        except Exception as e:
            logger.error(f"Failed to load budget data for project {project_id}: {e}")
            raise
        return compute_budget_stats(budget, items, costs)

    async def get_budget_alerts(self, project_id: str, status: Optional[str] = None) -> List[BudgetAlert]:
        query = {"project_id": project_id}
        if status:
            query["status"] = status
        docs = await self.db.budget_alerts.find(query, {"_id": 0}).sort("created_at", -1).to_list(1000)
        return [BudgetAlert(**d) for d in docs]

    async def check_and_create_alerts(self, project_id: str) -> List[BudgetAlert]:
        """Persist derived alerts whose type has never been raised for the project."""
        stats = await self.get_budget_stats(project_id)
        existing = {a.type for a in await self.get_budget_alerts(project_id)}
        created = []
        for alert in stats.alerts:
            if alert.type in existing:
                continue
            await self.db.budget_alerts.insert_one(alert.model_dump())
            created.append(alert)
            logger.info(f"Raised {alert.type} alert for project {project_id}")
        return created

    async def get_alert(self, alert_id: str) -> BudgetAlert:
        doc = await self.db.budget_alerts.find_one({"id": alert_id}, {"_id": 0})
        if not doc:
            raise HTTPException(status_code=404, detail="Alert not found")
        return BudgetAlert(**doc)

    async def project_id_of(self, budget_id: str = None, item_id: str = None,
                            cost_id: str = None, alert_id: str = None) -> str:
        """Resolve the project a budget, item, cost record or alert belongs to."""
        if item_id:
            budget_id = (await self.get_budget_item(item_id)).budget_id
        if budget_id:
            return (await self.get_budget(budget_id)).project_id
        if cost_id:
            return (await self.get_cost_record(cost_id)).project_id
        if alert_id:
            return (await self.get_alert(alert_id)).project_id
        raise ValueError("No resource id given")

    async def _transition_alert(self, alert_id: str, target: str, uid: str, notes: Optional[str]) -> BudgetAlert:
        allowed = ALERT_TRANSITIONS[target]
        prefix = "acknowledged" if target == AlertStatus.ACKNOWLEDGED else "resolved"
        now = now_iso()
        update = {"status": target, f"{prefix}_by": uid, f"{prefix}_at": now, "updated_at": now}
        if notes is not None:
            update["notes"] = notes
        result = await self.db.budget_alerts.update_one(
            {"id": alert_id, "status": {"$in": allowed}}, {"$set": update}
        )
        if result.matched_count == 0:
            doc = await self.db.budget_alerts.find_one({"id": alert_id}, {"_id": 0})
            if not doc:
                raise HTTPException(status_code=404, detail="Alert not found")
            raise HTTPException(status_code=400, detail=f"Cannot move alert from '{doc['status']}' to '{target}'")
        return BudgetAlert(**await self.db.budget_alerts.find_one({"id": alert_id}, {"_id": 0}))

    async def acknowledge_alert(self, alert_id: str, uid: str, notes: Optional[str] = None) -> BudgetAlert:
        return await self._transition_alert(alert_id, AlertStatus.ACKNOWLEDGED, uid, notes)

    async def resolve_alert(self, alert_id: str, uid: str, notes: Optional[str] = None) -> BudgetAlert:
        return await self._transition_alert(alert_id, AlertStatus.RESOLVED, uid, notes)
