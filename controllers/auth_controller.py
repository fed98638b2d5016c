from fastapi import HTTPException
import uuid

from database import db
from models.auth import UserRegister, UserLogin, Token, ProfileUpdate, MyPermissions
from models.rbac import UserProfile
from core.auth import verify_password, get_password_hash, create_access_token
from core.timeutil import now_iso
from controllers.permission_service import PermissionService


async def register(data: UserRegister, permissions: PermissionService) -> Token:
    if await db.users.find_one({"email": data.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    uid = str(uuid.uuid4())
    profile = await permissions.create_or_update_user_profile(uid, data.email, data.display_name, data.photo_url)
    await db.users.update_one({"uid": uid}, {"$set": {"password": get_password_hash(data.password)}})
    return Token(access_token=create_access_token({"sub": uid}), user=profile)


async def login(credentials: UserLogin, permissions: PermissionService) -> Token:
    user_doc = await db.users.find_one({"email": credentials.email})
    if not user_doc or not verify_password(credentials.password, user_doc.get("password", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user_doc.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is disabled")
    profile = await permissions.create_or_update_user_profile(
        user_doc["uid"], user_doc["email"], user_doc["display_name"]
    )
    return Token(access_token=create_access_token({"sub": profile.uid}), user=profile)


async def update_profile(current_user: UserProfile, data: ProfileUpdate) -> UserProfile:
    updates = {k: v for k, v in data.model_dump().items() if v is not None}
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    updates["updated_at"] = now_iso()
    await db.users.update_one({"uid": current_user.uid}, {"$set": updates})
    updated = await db.users.find_one({"uid": current_user.uid}, {"_id": 0, "password": 0})
    return UserProfile(**updated)


async def get_my_permissions(current_user: UserProfile, permissions: PermissionService) -> MyPermissions:
    scope = await permissions.get_user_data_scope(current_user.uid)
    return MyPermissions(
        role_id=current_user.role_id,
        is_owner=permissions.is_owner(current_user.uid),
        scope=scope.scope,
        permissions=await permissions.get_user_permission_ids(current_user.uid),
    )
