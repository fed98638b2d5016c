from pydantic import BaseModel, ConfigDict
from typing import Optional, List


class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    uid: str
    display_name: str
    role_id: Optional[str] = None
    action: str          # CREATE, UPDATE, DELETE, LOGIN
    module: str          # rbac, budget, points, projects, ...
    resource: str        # role, budget_item, cost_record, alert, ...
    resource_id: Optional[str] = None
    description: str
    ip_address: Optional[str] = None
    timestamp: str       # ISO-8601, UTC


class AuditPage(BaseModel):
    data: List[AuditLog]
    total: int
    page: int
    pages: int
    limit: int
