import logging
from typing import List, Optional

from fastapi import HTTPException
from pymongo import ReturnDocument

from core.timeutil import now_iso
from models.points import PointsEntry, LeaderboardEntry

logger = logging.getLogger(__name__)


class PointsLedger:
    """Per-user point totals on ``users.points`` plus an append-only
    ``points_history`` log. Increments are applied with ``$inc`` so concurrent
    awards are not lost."""

    def __init__(self, db):
        self.db = db

    async def get_user_points(self, uid: str) -> int:
        try:
            doc = await self.db.users.find_one({"uid": uid}, {"_id": 0, "points": 1})
        except Exception as e:
            logger.error(f"Failed to read points for {uid}: {e}")
            return 0
        return int(doc.get("points", 0)) if doc else 0

    async def _append(self, uid: str, delta: int, balance: int, reason: str) -> PointsEntry:
        entry = PointsEntry(uid=uid, delta=delta, balance=balance, reason=reason)
        await self.db.points_history.insert_one(entry.model_dump())
        return entry

    async def add_user_points(self, uid: str, delta: int, reason: Optional[str] = None) -> PointsEntry:
        try:
            updated = await self.db.users.find_one_and_update(
                {"uid": uid},
                {"$inc": {"points": delta}, "$set": {"updated_at": now_iso()}},
                projection={"_id": 0, "points": 1},
                return_document=ReturnDocument.AFTER,
            )
            if not updated:
                raise HTTPException(status_code=404, detail="User not found")
            return await self._append(uid, delta, updated["points"], reason or "Points added")
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Failed to add {delta} points to {uid}: {e}")
            raise

    async def set_user_points(self, uid: str, points: int, reason: Optional[str] = None) -> PointsEntry:
        try:
            previous = await self.db.users.find_one_and_update(
                {"uid": uid},
                {"$set": {"points": points, "updated_at": now_iso()}},
                projection={"_id": 0, "points": 1},
                return_document=ReturnDocument.BEFORE,
            )
            if not previous:
                raise HTTPException(status_code=404, detail="User not found")
            delta = points - int(previous.get("points", 0))
            return await self._append(uid, delta, points, reason or "Points updated")
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Failed to set points for {uid}: {e}")
            raise

    async def get_points_leaderboard(self, limit: int = 10) -> List[LeaderboardEntry]:
        try:
            docs = await self.db.users.find(
                {"is_active": True},
                {"_id": 0, "uid": 1, "display_name": 1, "points": 1, "photo_url": 1},
            ).sort("points", -1).limit(limit).to_list(limit)
        except Exception as e:
            logger.error(f"Failed to load points leaderboard: {e}")
            return []
        return [
            LeaderboardEntry(
                uid=d["uid"],
                display_name=d.get("display_name") or "Unknown user",
                points=d.get("points", 0),
                photo_url=d.get("photo_url"),
            )
            for d in docs
        ]

    async def get_points_history(self, uid: str, limit: int = 20) -> List[PointsEntry]:
        try:
            docs = await self.db.points_history.find({"uid": uid}, {"_id": 0}) \
                .sort("created_at", -1) \
                .limit(limit) \
                .to_list(limit)
        except Exception as e:
            logger.error(f"Failed to load points history for {uid}: {e}")
            return []
        return [PointsEntry(**d) for d in docs]
