"""Beanie document models and Pydantic schemas."""
from attendguard.models.teacher import Teacher
from attendguard.models.course import Course, Enrollment
from attendguard.models.student import Student, normalize_matric_no
from attendguard.models.session import ClassSession, SessionStart, SessionOut, SESSION_CODE_LENGTH
from attendguard.models.attendance import (
    AttendanceEntry,
    AttendanceOut,
    AttendanceRecord,
    AttendanceStatus,
    AttendanceSubmit,
    DeviceComponents,
    DeviceInfo,
    FingerprintConfidence,
    ManualMarkRequest,
)
from attendguard.models.device import DeviceMeta, DeviceSignature
from attendguard.models.audit import AuditLog

__all__ = [
    "Teacher",
    "Course",
    "Enrollment",
    "Student",
    "normalize_matric_no",
    "ClassSession",
    "SessionStart",
    "SessionOut",
    "SESSION_CODE_LENGTH",
    "AttendanceEntry",
    "AttendanceOut",
    "AttendanceRecord",
    "AttendanceStatus",
    "AttendanceSubmit",
    "DeviceComponents",
    "DeviceInfo",
    "FingerprintConfidence",
    "ManualMarkRequest",
    "DeviceMeta",
    "DeviceSignature",
    "AuditLog",
]
