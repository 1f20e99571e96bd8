"""Attendance submission pipeline and the teacher override path.

A submission walks a fixed sequence of gates; the first failing gate ends
the attempt with a typed rejection and nothing is written:

    session -> student -> enrollment -> level -> duplicate -> device
    -> geofence -> receipt -> persist

The duplicate and device gates are read-side shortcuts only. The unique
indexes on (session, matric) and (session, device signature) decide the
outcome when two submissions race, and a conflict raised at write time is
reported exactly like the pre-check would have reported it.

Out-of-range attempts are persisted with status ``rejected`` unless
``persist_rejected_attempts`` is disabled, in which case they are dropped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, Field

from attendguard.config import settings
from attendguard.errors import (
    AlreadySubmitted,
    DeviceAlreadyUsed,
    DuplicateRecordError,
    InternalPersistenceError,
    LevelMismatch,
    NotEnrolled,
    OutOfRange,
    PersistenceError,
    RejectionKind,
    SessionNotFound,
    StudentNotFound,
    SubmissionRejected,
)
from attendguard.models.attendance import AttendanceEntry, AttendanceStatus, AttendanceSubmit, DeviceInfo
from attendguard.services import audit
from attendguard.services.audit import AuditDispatcher, AuditEvent
from attendguard.services.device import (
    ResolvedDevice,
    device_meta,
    find_probable_duplicate,
    mask_signature,
    resolve_device_signature,
)
from attendguard.services.enrollment import is_enrolled, level_matches
from attendguard.services.geo import evaluate_geofence
from attendguard.services.receipt import sign_receipt, to_millis, truncate_to_millis
from attendguard.services.sessions import find_live_session
from attendguard.services.store import AttendanceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientContext:
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class Accepted(BaseModel):
    status: AttendanceStatus
    receipt: str
    distance_m: float
    record_id: str
    submitted_at: datetime
    student_name: str
    matric_no: str
    course_code: Optional[str] = None
    course_title: Optional[str] = None
    session_code: str


class Rejected(BaseModel):
    kind: RejectionKind
    message: str
    status_code: int
    details: dict[str, Any] = Field(default_factory=dict)


SubmissionResult = Union[Accepted, Rejected]


def manual_device_signature(session_id: str, student_id: str) -> str:
    # Never produced by resolve_device_signature, so it cannot collide with a real device.
    return f"manual:{session_id}:{student_id}"


class SubmissionPipeline:
    def __init__(
        self,
        store: AttendanceStore,
        audit_dispatcher: AuditDispatcher | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        persist_rejected: bool | None = None,
    ):
        self.store = store
        self.audit = audit_dispatcher
        self.clock = clock
        self.persist_rejected = settings.persist_rejected_attempts if persist_rejected is None else persist_rejected

    async def submit(self, request: AttendanceSubmit, client: ClientContext) -> SubmissionResult:
        try:
            accepted = await self._run(request, client)
        except SubmissionRejected as exc:
            logger.info(f"Attendance rejected ({exc.kind.value}) for {request.matric_no} code {request.session_code}")
            self._emit(audit.ATTENDANCE_REJECTED, request, client, kind=exc.kind.value, details=exc.details)
            return Rejected(kind=exc.kind, message=exc.message, status_code=exc.status_code, details=exc.details)
        except PersistenceError:
            logger.exception(f"Attendance submission failed for {request.matric_no}")
            exc = InternalPersistenceError()
            return Rejected(kind=exc.kind, message=exc.message, status_code=exc.status_code)
        logger.info(f"Attendance accepted for {accepted.matric_no} in session {accepted.session_code}")
        self._emit(audit.ATTENDANCE_SUBMITTED, request, client, record_id=accepted.record_id)
        return accepted

    async def _run(self, request: AttendanceSubmit, client: ClientContext) -> Accepted:
        store = self.store
        now = truncate_to_millis(self.clock())
        matric_no = request.matric_no

        session = await find_live_session(store, request.session_code, now)
        session_id = str(session.id)

        student = await store.find_student_by_matric(matric_no)
        if not student:
            raise StudentNotFound(details={"matric_no": matric_no})
        student_id = str(student.id)
        if request.level and student.level != request.level:
            await store.update_student_level(student, request.level)

        course = await store.get_course(session.course_id)
        if not course:
            logger.error(f"Session {session_id} references missing course {session.course_id}")
            raise InternalPersistenceError("Session configuration error")
        course_info = {"course_code": course.course_code, "course_title": course.title}

        if not await is_enrolled(store, session.course_id, student_id):
            raise NotEnrolled(details=course_info)

        if not level_matches(student.level, course.level):
            raise LevelMismatch(details={"student_level": student.level, "course_level": course.level})

        existing = await store.find_record_by_matric(session_id, matric_no)
        if existing:
            raise AlreadySubmitted(details=_existing_details(existing))

        device = resolve_device_signature(request.device_info, client.user_agent, client.ip)
        await self._check_device(session_id, device, request)

        fence = evaluate_geofence(session.lat, session.lng, request.lat, request.lng, session.radius_m)
        location_details = {
            "required_radius": fence.radius_m,
            "actual_distance": round(fence.distance_m),
            "difference": round(fence.difference_m),
        }
        if fence.within_range:
            status, reason = AttendanceStatus.PRESENT, "submitted online"
        elif not self.persist_rejected:
            raise OutOfRange(details=location_details)
        else:
            status = AttendanceStatus.REJECTED
            reason = f"outside geofence: {round(fence.distance_m)}m from center, radius {round(fence.radius_m)}m"

        receipt = sign_receipt(session_id, matric_no, now, session.nonce)

        info = request.device_info
        entry = AttendanceEntry(
            session_id=session_id,
            course_id=session.course_id,
            student_id=student_id,
            matric_no_submitted=matric_no,
            device_signature=device.signature,
            lat=request.lat,
            lng=request.lng,
            accuracy=request.accuracy,
            distance_m=fence.distance_m,
            status=status,
            reason=reason,
            receipt_signature=receipt,
            submitted_at=now,
            visitor_id=info.visitor_id if info else None,
            confidence_score=info.confidence.score if info and info.confidence else None,
            components=info.components if info else None,
            fingerprint_version=info.version if info else None,
        )
        record = await self._persist(entry, device, client, info)

        if status == AttendanceStatus.REJECTED:
            raise OutOfRange(details={**location_details, "record_id": str(record.id), "status": status.value})

        return Accepted(
            status=status,
            receipt=receipt,
            distance_m=fence.distance_m,
            record_id=str(record.id),
            submitted_at=now,
            student_name=student.name,
            matric_no=matric_no,
            session_code=session.session_code,
            **course_info,
        )

    async def _check_device(self, session_id: str, device: ResolvedDevice, request: AttendanceSubmit) -> None:
        used = await self.store.find_record_by_device(session_id, device.signature)
        if used:
            raise DeviceAlreadyUsed(details=await self._device_details(used, device))
        if not device.high_confidence:
            return
        components = request.device_info.components if request.device_info else None
        previous = await self.store.list_records_with_components(session_id)
        match = find_probable_duplicate(components, previous)
        if match:
            details = await self._device_details(match, device)
            details["probable_duplicate"] = True
            raise DeviceAlreadyUsed(details=details)

    async def _device_details(self, record: Any, device: ResolvedDevice) -> dict[str, Any]:
        # The previous user is named in the response.
        previous = await self.store.get_student(record.student_id)
        return {
            "previous_user": previous.name if previous else None,
            "previous_matric": record.matric_no_submitted,
            "submission_time": record.submitted_at.isoformat(),
            "device_signature": mask_signature(device.signature),
            "probable_duplicate": False,
        }

    async def _persist(
        self, entry: AttendanceEntry, device: ResolvedDevice, client: ClientContext, info: DeviceInfo | None
    ) -> Any:
        try:
            record = await self.store.insert_record(entry)
        except DuplicateRecordError as exc:
            logger.warning(f"Write-time conflict on {exc.constraint} for {entry.matric_no_submitted}")
            await self._raise_conflict(exc, entry, device)
            raise

        try:
            await self.store.upsert_device_signature(
                device.signature,
                entry.student_id,
                device_meta(info, client.user_agent, client.ip),
                entry.submitted_at,
                visitor_id=entry.visitor_id,
                components=entry.components,
            )
        except PersistenceError:
            # The attendance row is committed and authoritative; the cache is descriptive only.
            logger.exception(f"Device cache update failed for {mask_signature(device.signature)}")
        return record

    async def _raise_conflict(self, exc: DuplicateRecordError, entry: AttendanceEntry, device: ResolvedDevice) -> None:
        if exc.constraint == DuplicateRecordError.SESSION_MATRIC:
            existing = await self.store.find_record_by_matric(entry.session_id, entry.matric_no_submitted)
            raise AlreadySubmitted(details=_existing_details(existing) if existing else {})
        if exc.constraint == DuplicateRecordError.SESSION_DEVICE:
            used = await self.store.find_record_by_device(entry.session_id, device.signature)
            raise DeviceAlreadyUsed(details=await self._device_details(used, device) if used else {})

    async def mark_manual(
        self,
        session_id: str,
        student_id: str,
        status: AttendanceStatus,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> Any:
        """Teacher override: upsert keyed by (session, student), no geofence or device checks."""
        session = await self.store.get_session(session_id)
        if not session:
            raise SessionNotFound("Session not found", details={"session_id": session_id})
        student = await self.store.get_student(student_id)
        if not student:
            raise StudentNotFound(details={"student_id": student_id})
        if not await is_enrolled(self.store, session.course_id, student_id):
            raise NotEnrolled("Student not enrolled in this course")

        now = truncate_to_millis(self.clock())
        entry = AttendanceEntry(
            session_id=session_id,
            course_id=session.course_id,
            student_id=student_id,
            matric_no_submitted=student.matric_no,
            device_signature=manual_device_signature(session_id, student_id),
            lat=session.lat,
            lng=session.lng,
            accuracy=0,
            distance_m=0,
            status=status,
            reason=reason,
            receipt_signature=f"manual:{to_millis(now)}",
            submitted_at=now,
            is_manual=True,
        )
        try:
            record = await self.store.upsert_manual_record(entry)
        except PersistenceError as exc:
            logger.exception(f"Manual attendance failed for student {student_id} in session {session_id}")
            raise InternalPersistenceError() from exc
        logger.info(f"Manual attendance {status.value} for {student.matric_no} in session {session_id}")
        if self.audit:
            self.audit.emit(
                AuditEvent(
                    action=audit.MANUAL_ATTENDANCE_MARKED,
                    actor_id=actor_id,
                    payload={
                        "session_id": session_id,
                        "student_id": student_id,
                        "status": status.value,
                        "reason": reason,
                    },
                )
            )
        return record

    def _emit(self, action: str, request: AttendanceSubmit, client: ClientContext, **payload: Any) -> None:
        if not self.audit:
            return
        self.audit.emit(
            AuditEvent(
                action=action,
                payload={
                    "matric_no": request.matric_no,
                    "session_code": request.session_code,
                    "ip": client.ip,
                    "user_agent": client.user_agent,
                    **payload,
                },
            )
        )


def _existing_details(record: Any) -> dict[str, Any]:
    status = record.status
    return {
        "status": status.value if isinstance(status, AttendanceStatus) else status,
        "submitted_at": record.submitted_at.isoformat(),
    }
