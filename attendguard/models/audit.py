from datetime import datetime
from typing import Any, Optional

from beanie import Document
from pydantic import Field
from pymongo import IndexModel


class AuditLog(Document):
    action: str
    actor_id: Optional[str] = None  # teacher_id, or None for public submissions
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("actor_id", 1), ("created_at", -1)]),
            IndexModel([("action", 1), ("created_at", -1)]),
        ]
