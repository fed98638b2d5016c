"""
Seed script for BuildTrack - creates default permissions/roles, an owner
account and a demo project with a budget.
Run: python seed.py
"""
import asyncio
import os
import uuid
from datetime import datetime, timezone

from passlib.context import CryptContext

from config import OWNER_UIDS, DEFAULT_ROLE_ID, ONLINE_TIMEOUT_MINUTES
from database import db, client
from controllers.permission_service import PermissionService
from controllers.budget_controller import BudgetService
from models.budget import BudgetCreate, BudgetItemCreate

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

OWNER_EMAIL = os.environ.get('SEED_OWNER_EMAIL', 'owner@buildtrack.io')
OWNER_PASSWORD = os.environ.get('SEED_OWNER_PASSWORD', 'owner123')


async def seed():
    print("Starting seed...")
    permissions = PermissionService(db, OWNER_UIDS, DEFAULT_ROLE_ID, ONLINE_TIMEOUT_MINUTES)
    created = await permissions.initialize()
    print(f"Permissions created: {created['permissions']}, roles created: {created['roles']}")

    # ==================== OWNER ACCOUNT ====================
    owner_doc = await db.users.find_one({"email": OWNER_EMAIL})
    if owner_doc:
        print("Owner account already exists, skipping...")
        owner_uid = owner_doc["uid"]
    else:
        owner_uid = OWNER_UIDS[0] if OWNER_UIDS else str(uuid.uuid4())
        await permissions.create_or_update_user_profile(owner_uid, OWNER_EMAIL, "Owner")
        await db.users.update_one({"uid": owner_uid}, {"$set": {"password": pwd_context.hash(OWNER_PASSWORD)}})
        if not OWNER_UIDS:
            await permissions.assign_user_role(owner_uid, "owner", "system")
            await permissions.set_user_data_scope(owner_uid, "all")
            print(f"Set OWNER_UIDS={owner_uid} in .env to give this account the owner bypass")
        print(f"Owner account created: {OWNER_EMAIL} / {OWNER_PASSWORD}")

    # ==================== DEMO PROJECT ====================
    if await db.projects.find_one({"code": "PRJ-001"}):
        print("Demo project already exists, skipping...")
    else:
        project_id = str(uuid.uuid4())
        await db.projects.insert_one({
            "id": project_id,
            "name": "Riverside Office Tower",
            "code": "PRJ-001",
            "description": "12-storey office building with two basement levels",
            "location": "Taichung",
            "start_date": "2026-01-05",
            "end_date": "2027-06-30",
            "status": "in_progress",
            "created_by": owner_uid,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        budgets = BudgetService(db)
        budget = await budgets.create_budget(BudgetCreate(
            project_id=project_id, name="Main budget", total_budget=48_000_000,
            start_date="2026-01-05", end_date="2027-06-30",
        ), owner_uid)
        for name, category, amount in [
            ("Structural works", "subcontract", 21_000_000),
            ("Rebar and concrete", "material", 12_500_000),
            ("Site labour", "labor", 7_800_000),
            ("Tower crane rental", "equipment", 2_400_000),
            ("Contingency", "contingency", 2_000_000),
        ]:
            await budgets.create_budget_item(budget.id, BudgetItemCreate(
                name=name, category=category, allocated_amount=amount,
            ))
        print("Demo project and budget created")

    print("Seed completed.")


if __name__ == "__main__":
    try:
        asyncio.run(seed())
    finally:
        client.close()
