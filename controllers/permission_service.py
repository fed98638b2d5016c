import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from fastapi import HTTPException

from core.permission_matrix import DEFAULT_PERMISSIONS, DEFAULT_ROLES, ALL_PERMISSION_IDS
from core.retry import retry
from core.timeutil import now_iso, parse_timestamp, utc_now
from models.rbac import (
    DataScope, Permission, PermissionCheck, PermissionOutcome, PermissionReason,
    Role, RoleCreate, UserProfile, UserRole,
)

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime, None]


def is_user_online(last_activity_at: Timestamp, timeout_minutes: int,
                   last_login_at: Timestamp = None, now: Optional[datetime] = None) -> bool:
    """True iff the last activity (or login) is strictly younger than the timeout."""
    reference = last_activity_at or last_login_at
    if not reference:
        return False
    if isinstance(reference, str):
        reference = parse_timestamp(reference)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - reference < timedelta(minutes=timeout_minutes)


class PermissionService:
    """Role, permission and user-profile lookups over the ``users``, ``roles``,
    ``user_roles``, ``permissions`` and ``data_scopes`` collections.

    Read paths never raise: a missing or unreadable document produces a
    neutral result. Write paths log and re-raise.
    """

    def __init__(
        self,
        db,
        owner_uids: Iterable[str] = (),
        default_role_id: str = "user",
        online_timeout_minutes: int = 5,
        category_order: Optional[List[str]] = None,
        read_attempts: int = 3,
        retry_delay_ms: int = 1000,
    ):
        self.db = db
        self.owner_uids = frozenset(owner_uids)
        self.default_role = default_role_id
        self.online_timeout_minutes = online_timeout_minutes
        self.category_order = category_order or ["system", "settings", "user", "finance", "project"]
        self.read_attempts = read_attempts
        self.retry_delay_ms = retry_delay_ms

    def is_owner(self, uid: str) -> bool:
        return uid in self.owner_uids

    def default_role_id(self, uid: str) -> str:
        return "owner" if self.is_owner(uid) else self.default_role

    async def _find_one(self, collection: str, query: dict) -> Optional[dict]:
        return await retry(
            lambda: self.db[collection].find_one(query, {"_id": 0, "password": 0}),
            self.read_attempts, self.retry_delay_ms,
        )

    # ── Seeding ───────────────────────────────────────────

    async def initialize(self) -> Dict[str, int]:
        """Insert the default permissions and roles that are not stored yet."""
        created = {"permissions": 0, "roles": 0}
        try:
            for permission in DEFAULT_PERMISSIONS:
                if not await self.db.permissions.find_one({"id": permission.id}):
                    await self.db.permissions.insert_one(permission.model_dump())
                    created["permissions"] += 1
            now = now_iso()
            for role in DEFAULT_ROLES:
                if not await self.db.roles.find_one({"id": role.id}):
                    seeded = role.model_copy(update={"created_at": now, "updated_at": now})
                    await self.db.roles.insert_one(seeded.model_dump())
                    created["roles"] += 1
        except Exception as e:
            logger.error(f"Failed to initialize permissions and roles: {e}")
            raise
        if created["permissions"] or created["roles"]:
            logger.info(f"Seeded {created['permissions']} permissions and {created['roles']} roles")
        return created

    async def needs_initialization(self) -> bool:
        try:
            return await self.db.roles.find_one({"id": "owner"}) is None
        except Exception as e:
            logger.error(f"Failed to read initialization state: {e}")
            return True

    # ── Profiles & role assignment ────────────────────────

    async def get_user_profile(self, uid: str) -> Optional[UserProfile]:
        doc = await self._find_one("users", {"uid": uid})
        return UserProfile(**doc) if doc else None

    async def create_or_update_user_profile(self, uid: str, email: str, display_name: str,
                                            photo_url: Optional[str] = None) -> UserProfile:
        try:
            existing = await self.db.users.find_one({"uid": uid}, {"_id": 0})
            now = now_iso()
            if existing:
                update = {"display_name": display_name, "last_login_at": now, "updated_at": now}
                if photo_url is not None:
                    update["photo_url"] = photo_url
                await self.db.users.update_one({"uid": uid}, {"$set": update, "$inc": {"login_count": 1}})
            else:
                role_id = self.default_role_id(uid)
                profile = UserProfile(
                    uid=uid, email=email, display_name=display_name, role_id=role_id,
                    photo_url=photo_url, created_at=now, updated_at=now,
                    last_login_at=now, login_count=1,
                )
                await self.db.users.insert_one(profile.model_dump(exclude={"is_online"}))
                await self.assign_user_role(uid, role_id, uid)
                logger.info(f"Created profile for {email} with role '{role_id}'")
        except Exception as e:
            logger.error(f"Failed to create or update profile for {uid}: {e}")
            raise
        return await self.get_user_profile(uid)

    async def assign_user_role(self, uid: str, role_id: str, assigned_by: str,
                               expires_at: Optional[str] = None) -> UserRole:
        if not await self.db.users.find_one({"uid": uid}):
            raise HTTPException(status_code=404, detail="User not found")
        if not await self.db.roles.find_one({"id": role_id}):
            raise HTTPException(status_code=400, detail=f"Role '{role_id}' does not exist")
        assignment = UserRole(uid=uid, role_id=role_id, assigned_by=assigned_by, expires_at=expires_at)
        try:
            # keyed by uid: a new assignment replaces the previous one
            await self.db.user_roles.update_one({"uid": uid}, {"$set": assignment.model_dump()}, upsert=True)
            await self.db.users.update_one({"uid": uid}, {"$set": {"role_id": role_id, "updated_at": now_iso()}})
        except Exception as e:
            logger.error(f"Failed to assign role '{role_id}' to {uid}: {e}")
            raise
        return assignment

    async def revoke_user_role(self, uid: str) -> None:
        result = await self.db.user_roles.update_one({"uid": uid}, {"$set": {"is_active": False}})
        if result.matched_count == 0:
            raise HTTPException(status_code=404, detail="Role assignment not found")

    # ── Permission checks ─────────────────────────────────

    async def _resolve_role(self, uid: str) -> Tuple[Optional[Role], Optional[PermissionReason]]:
        doc = await self._find_one("user_roles", {"uid": uid})
        if not doc:
            return None, PermissionReason.ASSIGNMENT_MISSING
        assignment = UserRole(**doc)
        if not assignment.is_active:
            return None, PermissionReason.ROLE_REVOKED
        expires_at = parse_timestamp(assignment.expires_at)
        if expires_at and expires_at < utc_now():
            return None, PermissionReason.ROLE_EXPIRED
        role_doc = await self._find_one("roles", {"id": assignment.role_id})
        if not role_doc:
            return None, PermissionReason.ROLE_MISSING
        return Role(**role_doc), None

    async def _lookup(self, uid: str):
        try:
            profile = await self.get_user_profile(uid)
            role, failure = await self._resolve_role(uid)
            return profile, role, failure
        except Exception as e:
            logger.error(f"Permission lookup failed for {uid}: {e}")
            return None, None, PermissionReason.LOOKUP_FAILED

    def _decide(self, uid: str, permission_id: str, profile: Optional[UserProfile],
                role: Optional[Role], failure: Optional[PermissionReason]) -> PermissionCheck:
        if self.is_owner(uid):
            return PermissionCheck(outcome=PermissionOutcome.GRANTED, reason=PermissionReason.OWNER,
                                   role=role, user_profile=profile)
        if failure == PermissionReason.LOOKUP_FAILED:
            return PermissionCheck(outcome=PermissionOutcome.UNKNOWN, reason=failure)
        if profile is None:
            return PermissionCheck(outcome=PermissionOutcome.UNKNOWN, reason=PermissionReason.USER_MISSING)
        if role is None:
            outcome = PermissionOutcome.DENIED if failure in (
                PermissionReason.ROLE_EXPIRED, PermissionReason.ROLE_REVOKED) else PermissionOutcome.UNKNOWN
            return PermissionCheck(outcome=outcome, reason=failure, user_profile=profile)
        if permission_id in role.permissions:
            return PermissionCheck(outcome=PermissionOutcome.GRANTED, reason=PermissionReason.ROLE_GRANTS,
                                   role=role, user_profile=profile)
        return PermissionCheck(outcome=PermissionOutcome.DENIED, reason=PermissionReason.PERMISSION_ABSENT,
                               role=role, user_profile=profile)

    async def check_user_permission(self, uid: str, permission_id: str) -> PermissionCheck:
        profile, role, failure = await self._lookup(uid)
        return self._decide(uid, permission_id, profile, role, failure)

    async def check_user_permissions(self, uid: str, permission_ids: List[str]) -> Dict[str, bool]:
        profile, role, failure = await self._lookup(uid)
        return {pid: self._decide(uid, pid, profile, role, failure).has_permission for pid in permission_ids}

    async def get_user_permission_ids(self, uid: str) -> List[str]:
        if self.is_owner(uid):
            return list(ALL_PERMISSION_IDS)
        _, role, _ = await self._lookup(uid)
        return list(role.permissions) if role else []

    # ── Roles & permissions ───────────────────────────────

    async def create_custom_role(self, data: RoleCreate, created_by: str) -> str:
        if data.level <= 0:
            raise HTTPException(status_code=400, detail="Level 0 is reserved for the owner role")
        role_id = f"role_{uuid.uuid4().hex[:12]}"
        role = Role(**data.model_dump(), id=role_id, is_custom=True,
                    created_by=created_by, updated_by=created_by)
        try:
            await self.db.roles.insert_one(role.model_dump())
        except Exception as e:
            logger.error(f"Failed to create custom role '{data.name}': {e}")
            raise
        logger.info(f"Custom role '{data.name}' ({role_id}) created by {created_by}")
        return role_id

    async def get_role(self, role_id: str) -> Role:
        doc = await self.db.roles.find_one({"id": role_id}, {"_id": 0})
        if not doc:
            raise HTTPException(status_code=404, detail="Role not found")
        return Role(**doc)

    async def get_all_roles(self) -> List[Role]:
        docs = await self.db.roles.find({}, {"_id": 0}).sort("level", 1).to_list(1000)
        return [Role(**d) for d in docs]

    async def get_all_permissions(self) -> List[Permission]:
        docs = await self.db.permissions.find({}, {"_id": 0}).to_list(1000)
        order = {c: i for i, c in enumerate(self.category_order)}
        permissions = [Permission(**d) for d in docs]
        return sorted(permissions, key=lambda p: (order.get(p.category, len(order)), p.category, p.id))

    async def update_role_permissions(self, role_id: str, permissions: List[str], updated_by: str) -> Role:
        result = await self.db.roles.update_one(
            {"id": role_id},
            {"$set": {"permissions": permissions, "updated_at": now_iso(), "updated_by": updated_by}},
        )
        if result.matched_count == 0:
            raise HTTPException(status_code=404, detail="Role not found")
        return await self.get_role(role_id)

    async def _update_custom_role(self, role_id: str, field: str, value: str, updated_by: str) -> Role:
        role = await self.get_role(role_id)
        if not role.is_custom:
            raise HTTPException(status_code=400, detail="Built-in roles cannot be modified")
        await self.db.roles.update_one(
            {"id": role_id},
            {"$set": {field: value, "updated_at": now_iso(), "updated_by": updated_by}},
        )
        return await self.get_role(role_id)

    async def update_role_name(self, role_id: str, name: str, updated_by: str) -> Role:
        return await self._update_custom_role(role_id, "name", name, updated_by)

    async def update_role_description(self, role_id: str, description: str, updated_by: str) -> Role:
        return await self._update_custom_role(role_id, "description", description, updated_by)

    async def delete_custom_role(self, role_id: str) -> None:
        role = await self.get_role(role_id)
        if not role.is_custom:
            raise HTTPException(status_code=400, detail="Built-in roles cannot be deleted")
        assigned = await self.db.user_roles.count_documents({"role_id": role_id, "is_active": True})
        if assigned > 0:
            raise HTTPException(status_code=400, detail=f"Cannot delete role: {assigned} user(s) still assigned")
        await self.db.roles.delete_one({"id": role_id})
        logger.info(f"Custom role {role_id} deleted")

    # ── Data scope ────────────────────────────────────────

    async def get_user_data_scope(self, uid: str) -> DataScope:
        if self.is_owner(uid):
            return DataScope(uid=uid, scope="all")
        try:
            doc = await self._find_one("data_scopes", {"uid": uid})
            if doc:
                return DataScope(**doc)
        except Exception as e:
            logger.error(f"Failed to read data scope for {uid}: {e}")
        return DataScope(uid=uid, scope="own")

    async def set_user_data_scope(self, uid: str, scope: str) -> DataScope:
        data_scope = DataScope(uid=uid, scope=scope)
        await self.db.data_scopes.update_one({"uid": uid}, {"$set": data_scope.model_dump()}, upsert=True)
        return data_scope

    # ── Presence ──────────────────────────────────────────

    def is_user_online(self, last_activity_at: Timestamp, last_login_at: Timestamp = None,
                       now: Optional[datetime] = None) -> bool:
        return is_user_online(last_activity_at, self.online_timeout_minutes, last_login_at, now)

    async def update_user_activity(self, uid: str) -> None:
        try:
            await self.db.users.update_one({"uid": uid}, {"$set": {"last_activity_at": now_iso()}})
        except Exception as e:
            # presence is best effort and must not fail the request
            logger.warning(f"Failed to update activity for {uid}: {e}")

    async def get_all_users(self) -> List[UserProfile]:
        docs = await self.db.users.find({}, {"_id": 0, "password": 0}).to_list(1000)
        now = utc_now()
        users = []
        for doc in docs:
            profile = UserProfile(**doc)
            profile.is_online = self.is_user_online(profile.last_activity_at, profile.last_login_at, now)
            users.append(profile)
        return users
