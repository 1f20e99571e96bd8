"""Attendance records and the student submission payload."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo import IndexModel

from attendguard.models.session import SESSION_CODE_LENGTH
from attendguard.models.student import normalize_matric_no


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    REJECTED = "rejected"
    MANUAL_PRESENT = "manual_present"


MANUAL_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.ABSENT, AttendanceStatus.MANUAL_PRESENT)
PRESENT_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.MANUAL_PRESENT)


class DeviceComponents(BaseModel):
    """Structured signals reported alongside a high-confidence visitor id."""
    model_config = ConfigDict(extra="forbid")

    screen_resolution: Optional[str] = Field(None, max_length=32)
    timezone: Optional[str] = Field(None, max_length=64)
    languages: Optional[list[str]] = Field(None, max_length=16)


class FingerprintConfidence(BaseModel):
    model_config = ConfigDict(extra="forbid")

    score: float = Field(ge=0, le=1)
    comment: Optional[str] = Field(None, max_length=256)


class DeviceInfo(BaseModel):
    """Closed set of device descriptors a client may send; unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid")

    platform: Optional[str] = Field(None, max_length=128)
    browser: Optional[str] = Field(None, max_length=128)
    screen_resolution: Optional[str] = Field(None, max_length=32)
    timezone: Optional[str] = Field(None, max_length=64)
    user_agent: Optional[str] = Field(None, max_length=512)
    language: Optional[str] = Field(None, max_length=64)
    device_fingerprint: Optional[str] = Field(None, min_length=1, max_length=256)
    os: Optional[str] = Field(None, max_length=128)
    device_type: Optional[str] = Field(None, max_length=64)

    # High-confidence fingerprinting (FingerprintJS-style agent)
    visitor_id: Optional[str] = Field(None, min_length=1, max_length=256)
    confidence: Optional[FingerprintConfidence] = None
    components: Optional[DeviceComponents] = None
    version: Optional[str] = Field(None, max_length=32)


class AttendanceSubmit(BaseModel):
    matric_no: str = Field(min_length=1, max_length=64)
    session_code: str = Field(
        min_length=SESSION_CODE_LENGTH,
        max_length=SESSION_CODE_LENGTH,
        pattern=r"^[0-9]+$",
    )
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float = Field(0, ge=0, le=10000)
    level: Optional[int] = Field(None, ge=100, le=600)
    device_info: Optional[DeviceInfo] = None

    @field_validator("matric_no")
    @classmethod
    def validate_matric_no(cls, value: str) -> str:
        value = normalize_matric_no(value)
        if not value:
            raise ValueError("Matriculation number is required")
        return value

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value % 100 != 0:
            raise ValueError("Level must be in increments of 100 (100, 200, 300, 400, 500, 600)")
        return value


class AttendanceEntry(BaseModel):
    """Store-agnostic attendance row, written once by the pipeline."""

    session_id: str
    course_id: str
    student_id: str
    matric_no_submitted: str
    device_signature: str
    lat: float
    lng: float
    accuracy: Optional[float] = None
    distance_m: Optional[float] = None
    status: AttendanceStatus = AttendanceStatus.PRESENT
    reason: Optional[str] = None
    receipt_signature: str
    submitted_at: datetime = Field(default_factory=datetime.utcnow)
    is_manual: bool = False

    visitor_id: Optional[str] = None
    confidence_score: Optional[float] = None
    components: Optional[DeviceComponents] = None
    fingerprint_version: Optional[str] = None


class AttendanceRecord(Document):
    """Persisted attendance entry. Reports are built from these fields."""

    session_id: str
    course_id: str
    student_id: str
    matric_no_submitted: str
    device_signature: str
    lat: float
    lng: float
    accuracy: Optional[float] = None
    distance_m: Optional[float] = None
    status: AttendanceStatus = AttendanceStatus.PRESENT
    reason: Optional[str] = None
    receipt_signature: str
    submitted_at: datetime = Field(default_factory=datetime.utcnow)
    is_manual: bool = False

    visitor_id: Optional[str] = None
    confidence_score: Optional[float] = None
    components: Optional[DeviceComponents] = None
    fingerprint_version: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "attendance"
        use_state_management = True
        # Both constraints are authoritative; the pipeline's read-side checks are only a shortcut.
        indexes = [
            IndexModel([("session_id", 1), ("matric_no_submitted", 1)], unique=True, name="session_matric_unique"),
            IndexModel([("session_id", 1), ("device_signature", 1)], unique=True, name="session_device_unique"),
            IndexModel([("session_id", 1), ("visitor_id", 1)]),
            IndexModel([("course_id", 1), ("submitted_at", -1)]),
        ]


class ManualMarkRequest(BaseModel):
    status: AttendanceStatus
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: AttendanceStatus) -> AttendanceStatus:
        if value not in MANUAL_STATUSES:
            raise ValueError("Status must be one of present, absent, manual_present")
        return value

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value else value


class AttendanceOut(BaseModel):
    id: str
    session_id: str
    course_id: str
    student_id: str
    matric_no_submitted: str
    status: AttendanceStatus
    reason: Optional[str] = None
    distance_m: Optional[float] = None
    accuracy: Optional[float] = None
    submitted_at: datetime
    is_manual: bool
