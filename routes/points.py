from fastapi import APIRouter, Depends, Query, Request
from typing import List
from models.points import PointsAdjust, PointsEntry, LeaderboardEntry
from models.rbac import UserProfile
from core.auth import get_current_user, check_permission, get_points_ledger
from controllers.points_controller import PointsLedger
from controllers.audit_controller import log_audit, get_client_ip as _ip

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/me")
async def get_my_points(current_user: UserProfile = Depends(get_current_user), ledger: PointsLedger = Depends(get_points_ledger)):
    return {"uid": current_user.uid, "points": await ledger.get_user_points(current_user.uid)}


@router.get("/me/history", response_model=List[PointsEntry])
async def get_my_history(limit: int = Query(20, ge=1, le=100), current_user: UserProfile = Depends(get_current_user), ledger: PointsLedger = Depends(get_points_ledger)):
    return await ledger.get_points_history(current_user.uid, limit)


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(limit: int = Query(10, ge=1, le=100), current_user: UserProfile = Depends(check_permission("dashboard:read")), ledger: PointsLedger = Depends(get_points_ledger)):
    return await ledger.get_points_leaderboard(limit)


@router.get("/users/{uid}/history", response_model=List[PointsEntry])
async def get_user_history(uid: str, limit: int = Query(20, ge=1, le=100), current_user: UserProfile = Depends(check_permission("user:read")), ledger: PointsLedger = Depends(get_points_ledger)):
    return await ledger.get_points_history(uid, limit)


@router.post("/users/{uid}/add", response_model=PointsEntry)
async def add_points(uid: str, data: PointsAdjust, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), ledger: PointsLedger = Depends(get_points_ledger)):
    result = await ledger.add_user_points(uid, data.points, data.reason)
    await log_audit(current_user, "UPDATE", "points", "points", f"Added {data.points} points", uid, _ip(request))
    return result


@router.put("/users/{uid}", response_model=PointsEntry)
async def set_points(uid: str, data: PointsAdjust, request: Request, current_user: UserProfile = Depends(check_permission("user:admin")), ledger: PointsLedger = Depends(get_points_ledger)):
    result = await ledger.set_user_points(uid, data.points, data.reason)
    await log_audit(current_user, "UPDATE", "points", "points", f"Set points to {data.points}", uid, _ip(request))
    return result
