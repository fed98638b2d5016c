from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from datetime import datetime, timezone, timedelta
import jwt

from config import JWT_SECRET, JWT_ALGORITHM, ACCESS_TOKEN_EXPIRE_HOURS
from controllers.permission_service import PermissionService
from controllers.points_controller import PointsLedger
from controllers.budget_controller import BudgetService
from models.rbac import UserProfile

security = HTTPBearer()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


# Services are built once in server.py and kept on app.state.

def get_permission_service(request: Request) -> PermissionService:
    return request.app.state.permission_service


def get_points_ledger(request: Request) -> PointsLedger:
    return request.app.state.points_ledger


def get_budget_service(request: Request) -> BudgetService:
    return request.app.state.budget_service


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    permissions: PermissionService = Depends(get_permission_service),
) -> UserProfile:
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    uid = payload.get("sub")
    if uid is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    profile = await permissions.get_user_profile(uid)
    if profile is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not profile.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")
    await permissions.update_user_activity(uid)
    return profile


def check_permission(permission_id: str):
    async def permission_checker(
        current_user: UserProfile = Depends(get_current_user),
        permissions: PermissionService = Depends(get_permission_service),
    ):
        result = await permissions.check_user_permission(current_user.uid, permission_id)
        if not result.has_permission:
            raise HTTPException(
                status_code=403,
                detail=f"Missing permission '{permission_id}' ({result.reason.value})",
            )
        return current_user
    return permission_checker
