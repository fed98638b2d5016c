from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Literal
import uuid
from datetime import datetime, timezone

BudgetCategory = Literal["labor", "material", "equipment", "subcontract", "overhead", "contingency", "other"]
PriorityLevel = Literal["low", "medium", "high", "critical"]
CostStatus = Literal["planned", "committed", "invoiced", "paid"]
AlertType = Literal["over_budget", "over_allocation", "cost_variance", "schedule_variance"]
Band = Literal["healthy", "warning", "critical"]


class AlertStatus:
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _id() -> str:
    return str(uuid.uuid4())


class BudgetCreate(BaseModel):
    project_id: str
    name: str
    description: Optional[str] = None
    total_budget: float = Field(ge=0)
    currency: str = "TWD"
    start_date: str
    end_date: str
    notes: Optional[str] = None


class BudgetUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    total_budget: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[Literal["draft", "approved", "active", "closed"]] = None
    notes: Optional[str] = None


class ProjectBudget(BudgetCreate):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=_id)
    status: str = "draft"
    created_by: str
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)


class BudgetItemCreate(BaseModel):
    name: str
    description: Optional[str] = None
    category: BudgetCategory
    allocated_amount: float = Field(ge=0)
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    priority: PriorityLevel = "medium"
    notes: Optional[str] = None


class BudgetItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[BudgetCategory] = None
    allocated_amount: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    priority: Optional[PriorityLevel] = None
    status: Optional[Literal["active", "on_hold", "completed"]] = None
    notes: Optional[str] = None


class BudgetItem(BudgetItemCreate):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=_id)
    budget_id: str
    spent_amount: float = 0.0
    committed_amount: float = 0.0
    status: str = "active"
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)


class CostRecordCreate(BaseModel):
    budget_item_id: Optional[str] = None
    description: str
    amount: float
    date: str
    category: BudgetCategory
    status: CostStatus = "planned"
    invoice_number: Optional[str] = None
    supplier: Optional[str] = None
    notes: Optional[str] = None


class CostRecordUpdate(BaseModel):
    description: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[str] = None
    category: Optional[BudgetCategory] = None
    status: Optional[CostStatus] = None
    invoice_number: Optional[str] = None
    supplier: Optional[str] = None
    notes: Optional[str] = None


class CostRecord(CostRecordCreate):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=_id)
    project_id: str
    recorded_by: str
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)


class BudgetAlert(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=_id)
    project_id: str
    type: AlertType
    severity: PriorityLevel
    message: str
    status: str = AlertStatus.ACTIVE
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)


class AlertTransition(BaseModel):
    notes: Optional[str] = None


class CategoryStats(BaseModel):
    allocated: float = 0.0
    spent: float = 0.0
    committed: float = 0.0


class BudgetStats(BaseModel):
    total_budget: float = 0.0
    total_allocated: float = 0.0
    total_spent: float = 0.0
    total_committed: float = 0.0
    remaining_budget: float = 0.0
    available_budget: float = 0.0
    budget_utilization: float = 0.0
    allocation_rate: float = 0.0
    utilization_band: Band = "healthy"
    allocation_band: Band = "healthy"
    category_stats: Dict[str, CategoryStats] = Field(default_factory=dict)
    recent_costs: List[CostRecord] = Field(default_factory=list)
    alerts: List[BudgetAlert] = Field(default_factory=list)
