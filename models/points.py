from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
import uuid
from datetime import datetime, timezone


class PointsAdjust(BaseModel):
    points: int
    reason: Optional[str] = None


class PointsEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    uid: str
    delta: int
    balance: int
    reason: str = "Points updated"
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class LeaderboardEntry(BaseModel):
    uid: str
    display_name: str
    points: int
    photo_url: Optional[str] = None
