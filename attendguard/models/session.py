"""Classroom attendance sessions opened by a teacher."""
from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, Field
from pymongo import IndexModel

SESSION_CODE_LENGTH = 4


class ClassSession(Document):
    """One opening of attendance for a course. Liveness is derived, never stored."""

    course_id: Indexed(str)
    teacher_id: Indexed(str)
    session_code: str
    start_ts: datetime = Field(default_factory=datetime.utcnow)
    expiry_ts: datetime
    lat: float
    lng: float
    radius_m: float = 100
    nonce: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "sessions"
        use_state_management = True
        indexes = [
            IndexModel([("session_code", 1), ("is_active", 1)]),
            # At most one active session per code; expired ones are deactivated before a code is reused.
            IndexModel(
                [("session_code", 1)],
                unique=True,
                partialFilterExpression={"is_active": True},
                name="live_session_code_unique",
            ),
            IndexModel([("expiry_ts", 1)]),
        ]


class SessionStart(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    radius_m: Optional[int] = Field(None, ge=10, le=10000)
    duration_minutes: Optional[int] = Field(None, ge=5, le=480)


class SessionOut(BaseModel):
    id: str
    course_id: str
    teacher_id: str
    session_code: str
    start_ts: datetime
    expiry_ts: datetime
    lat: float
    lng: float
    radius_m: float
    is_active: bool
    is_live: bool
