"""Last-seen cache of device signatures."""
from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, Field
from pymongo import IndexModel

from attendguard.models.attendance import DeviceComponents


class DeviceMeta(BaseModel):
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    platform: Optional[str] = None
    browser: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    os: Optional[str] = None
    device_type: Optional[str] = None


class DeviceSignature(Document):
    """Maps a device signature to the most recent student who used it."""

    signature: Indexed(str, unique=True)
    student_id: Optional[str] = None
    first_seen: datetime = Field(default_factory=datetime.utcnow)
    last_seen: datetime = Field(default_factory=datetime.utcnow)
    visitor_id: Optional[str] = None
    meta: DeviceMeta = Field(default_factory=DeviceMeta)
    components: Optional[DeviceComponents] = None

    class Settings:
        name = "device_signatures"
        indexes = [IndexModel([("visitor_id", 1)])]
