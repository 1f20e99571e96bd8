"""Teachers own courses and open attendance sessions."""
from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import EmailStr, Field


class Teacher(Document):
    """Teacher account; credentials and login live with the auth service."""

    email: Indexed(EmailStr, unique=True)
    name: str
    department: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "teachers"
        use_state_management = True
