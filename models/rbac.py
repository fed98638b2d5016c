from pydantic import BaseModel, Field, ConfigDict, computed_field
from typing import Optional, List, Literal
from enum import Enum
from datetime import datetime, timezone


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Permission(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str
    description: str
    resource: str
    action: str
    category: str


class RoleCreate(BaseModel):
    name: str
    description: Optional[str] = None
    level: int = 3
    permissions: List[str] = Field(default_factory=list)


class Role(RoleCreate):
    model_config = ConfigDict(extra="ignore")
    id: str
    is_custom: bool = False
    created_at: str = Field(default_factory=_now)
    created_by: str = "system"
    updated_at: str = Field(default_factory=_now)
    updated_by: str = "system"


class RolePermissionsUpdate(BaseModel):
    permissions: List[str]


class RoleNameUpdate(BaseModel):
    name: str


class RoleDescriptionUpdate(BaseModel):
    description: str


class UserRole(BaseModel):
    model_config = ConfigDict(extra="ignore")
    uid: str
    role_id: str
    assigned_by: str
    assigned_at: str = Field(default_factory=_now)
    is_active: bool = True
    expires_at: Optional[str] = None


class UserRoleAssign(BaseModel):
    role_id: str
    expires_at: Optional[datetime] = None


class UserProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")
    uid: str
    email: str
    display_name: str
    role_id: str
    is_active: bool = True
    points: int = 0
    photo_url: Optional[str] = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)
    last_login_at: Optional[str] = None
    login_count: int = 0
    last_activity_at: Optional[str] = None
    is_online: Optional[bool] = None


class DataScope(BaseModel):
    model_config = ConfigDict(extra="ignore")
    uid: str
    scope: Literal["own", "all"] = "own"


class DataScopeUpdate(BaseModel):
    scope: Literal["own", "all"]


class PermissionOutcome(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNKNOWN = "unknown"


class PermissionReason(str, Enum):
    OWNER = "owner"
    ROLE_GRANTS = "role_grants"
    PERMISSION_ABSENT = "permission_absent"
    ROLE_EXPIRED = "role_expired"
    ROLE_REVOKED = "role_revoked"
    USER_MISSING = "user_missing"
    ASSIGNMENT_MISSING = "assignment_missing"
    ROLE_MISSING = "role_missing"
    LOOKUP_FAILED = "lookup_failed"


class PermissionCheck(BaseModel):
    """Result of a permission lookup.

    ``unknown`` means a document needed for the decision was absent or
    unreadable. Callers must treat it exactly like ``denied``; the distinction
    only exists so the cause can be reported.
    """
    outcome: PermissionOutcome
    reason: PermissionReason
    role: Optional[Role] = None
    user_profile: Optional[UserProfile] = None

    @computed_field
    @property
    def has_permission(self) -> bool:
        return self.outcome == PermissionOutcome.GRANTED


class PermissionCoverage(BaseModel):
    permission_count: int
    coverage: float
