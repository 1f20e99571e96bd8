"""Rejection taxonomy for attendance submissions and persistence errors."""
from __future__ import annotations

from enum import Enum
from typing import Any


class RejectionKind(str, Enum):
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    STUDENT_NOT_FOUND = "student_not_found"
    NOT_ENROLLED = "not_enrolled"
    LEVEL_MISMATCH = "level_mismatch"
    ALREADY_SUBMITTED = "already_submitted"
    DEVICE_ALREADY_USED = "device_already_used"
    OUT_OF_RANGE = "out_of_range"
    MALFORMED_DEVICE_INFO = "malformed_device_info"
    INTERNAL_PERSISTENCE_ERROR = "internal_persistence_error"


class SubmissionRejected(Exception):
    """Base class for every terminal failure of a submission attempt."""

    kind: RejectionKind = RejectionKind.INTERNAL_PERSISTENCE_ERROR
    status_code: int = 500
    message: str = "Attendance submission failed"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        if message:
            self.message = message
        self.details = details or {}
        super().__init__(self.message)


class SessionNotFound(SubmissionRejected):
    # Wrong code and expired code are reported identically.
    kind = RejectionKind.SESSION_NOT_FOUND
    status_code = 404
    message = "Invalid session code or session has expired"


class SessionExpired(SubmissionRejected):
    kind = RejectionKind.SESSION_EXPIRED
    status_code = 400
    message = "Session has expired"


class StudentNotFound(SubmissionRejected):
    kind = RejectionKind.STUDENT_NOT_FOUND
    status_code = 404
    message = "Student not found in the system"


class NotEnrolled(SubmissionRejected):
    kind = RejectionKind.NOT_ENROLLED
    status_code = 403
    message = "You are not enrolled in this course"


class LevelMismatch(SubmissionRejected):
    kind = RejectionKind.LEVEL_MISMATCH
    status_code = 400
    message = "Level mismatch: You are not eligible for this course level"


class AlreadySubmitted(SubmissionRejected):
    kind = RejectionKind.ALREADY_SUBMITTED
    status_code = 409
    message = "Attendance already submitted for this session"


class DeviceAlreadyUsed(SubmissionRejected):
    kind = RejectionKind.DEVICE_ALREADY_USED
    status_code = 409
    message = "Device already used for attendance in this session"


class OutOfRange(SubmissionRejected):
    kind = RejectionKind.OUT_OF_RANGE
    status_code = 400
    message = "Location validation failed"


class MalformedDeviceInfo(SubmissionRejected):
    kind = RejectionKind.MALFORMED_DEVICE_INFO
    status_code = 400
    message = "Invalid device_info payload"


class InternalPersistenceError(SubmissionRejected):
    kind = RejectionKind.INTERNAL_PERSISTENCE_ERROR
    status_code = 500
    message = "Internal server error"


class PersistenceError(Exception):
    """Raised by a store when the database operation itself failed."""


class DuplicateRecordError(PersistenceError):
    """A uniqueness constraint rejected a write."""

    SESSION_MATRIC = "session_matric"
    SESSION_DEVICE = "session_device"
    LIVE_SESSION_CODE = "live_session_code"

    def __init__(self, constraint: str):
        self.constraint = constraint
        super().__init__(f"Duplicate record ({constraint})")
