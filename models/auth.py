from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Dict, List

from models.rbac import UserProfile


class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    display_name: str
    photo_url: Optional[str] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserProfile


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class MyPermissions(BaseModel):
    role_id: Optional[str] = None
    is_owner: bool = False
    scope: str = "own"
    permissions: List[str] = Field(default_factory=list)


class PermissionQuery(BaseModel):
    permission_ids: List[str]


class PermissionMap(BaseModel):
    permissions: Dict[str, bool]
