"""Student directory keyed by matriculation number."""
from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import Field


def normalize_matric_no(value: str) -> str:
    return value.strip().upper()


class Student(Document):
    matric_no: Indexed(str, unique=True)  # stored normalized (upper-case)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    level: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "students"
        use_state_management = True
