"""Persistence seam for the attendance core.

The pipeline only talks to an ``AttendanceStore``. ``MongoAttendanceStore`` is
the production implementation on Beanie; the compound unique indexes on
``AttendanceRecord`` are what make duplicate submissions impossible, and this
module translates their violations into ``DuplicateRecordError``.
"""
from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from beanie import PydanticObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from attendguard.errors import DuplicateRecordError, PersistenceError
from attendguard.models.attendance import AttendanceEntry, AttendanceRecord, DeviceComponents
from attendguard.models.course import Course, Enrollment
from attendguard.models.device import DeviceMeta, DeviceSignature
from attendguard.models.session import ClassSession
from attendguard.models.student import Student

logger = logging.getLogger(__name__)


class AttendanceStore(Protocol):
    async def find_live_session(self, code: str, now: datetime) -> Any: ...

    async def find_live_session_for_course(self, course_id: str, now: datetime) -> Any: ...

    async def get_session(self, session_id: str) -> Any: ...

    async def find_session_for_teacher(self, session_id: str, teacher_id: str) -> Any: ...

    async def release_expired_code(self, code: str, now: datetime) -> None: ...

    async def insert_session(self, **fields: Any) -> Any: ...

    async def save_session(self, session: Any) -> None: ...

    async def find_student_by_matric(self, matric_no: str) -> Any: ...

    async def get_student(self, student_id: str) -> Any: ...

    async def update_student_level(self, student: Any, level: int) -> None: ...

    async def get_course(self, course_id: str) -> Any: ...

    async def is_enrolled(self, course_id: str, student_id: str) -> bool: ...

    async def find_record_by_matric(self, session_id: str, matric_no: str) -> Any: ...

    async def find_record_by_device(self, session_id: str, signature: str) -> Any: ...

    async def list_records_with_components(self, session_id: str) -> list[Any]: ...

    async def insert_record(self, entry: AttendanceEntry) -> Any: ...

    async def upsert_manual_record(self, entry: AttendanceEntry) -> Any: ...

    async def upsert_device_signature(
        self,
        signature: str,
        student_id: str,
        meta: DeviceMeta,
        now: datetime,
        visitor_id: Optional[str] = None,
        components: Optional[DeviceComponents] = None,
    ) -> None: ...

    async def list_session_records(
        self, session_id: str, status: Optional[str], skip: int, limit: int
    ) -> tuple[list[Any], int]: ...

    async def session_status_counts(self, session_id: str) -> dict[str, int]: ...


def safe_object_id(value: str | None) -> PydanticObjectId | None:
    if not value:
        return None
    try:
        return PydanticObjectId(value)
    except Exception:
        return None


def _constraint_from_error(exc: DuplicateKeyError) -> str:
    details = exc.details or {}
    key_pattern = details.get("keyPattern") or {}
    message = details.get("errmsg") or str(exc)
    if "matric_no_submitted" in key_pattern or "session_matric_unique" in message:
        return DuplicateRecordError.SESSION_MATRIC
    if "device_signature" in key_pattern or "session_device_unique" in message:
        return DuplicateRecordError.SESSION_DEVICE
    if "session_code" in key_pattern or "live_session_code_unique" in message:
        return DuplicateRecordError.LIVE_SESSION_CODE
    return ",".join(key_pattern) or "unknown"


def _translate_errors(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(_constraint_from_error(exc)) from exc
        except PyMongoError as exc:
            logger.error(f"MongoDB operation {func.__name__} failed: {exc}")
            raise PersistenceError(str(exc)) from exc

    return wrapper


class MongoAttendanceStore:
    """AttendanceStore backed by the registered Beanie documents."""

    @_translate_errors
    async def find_live_session(self, code: str, now: datetime) -> Optional[ClassSession]:
        return await ClassSession.find_one(
            {"session_code": code, "is_active": True, "expiry_ts": {"$gt": now}}
        )

    @_translate_errors
    async def find_live_session_for_course(self, course_id: str, now: datetime) -> Optional[ClassSession]:
        return await ClassSession.find_one(
            {"course_id": course_id, "is_active": True, "expiry_ts": {"$gt": now}}
        )

    @_translate_errors
    async def get_session(self, session_id: str) -> Optional[ClassSession]:
        oid = safe_object_id(session_id)
        if not oid:
            return None
        return await ClassSession.get(oid)

    @_translate_errors
    async def find_session_for_teacher(self, session_id: str, teacher_id: str) -> Optional[ClassSession]:
        oid = safe_object_id(session_id)
        if not oid:
            return None
        return await ClassSession.find_one({"_id": oid, "teacher_id": teacher_id})

    @_translate_errors
    async def release_expired_code(self, code: str, now: datetime) -> None:
        await ClassSession.get_motor_collection().update_many(
            {"session_code": code, "is_active": True, "expiry_ts": {"$lte": now}},
            {"$set": {"is_active": False}},
        )

    @_translate_errors
    async def insert_session(self, **fields: Any) -> ClassSession:
        session = ClassSession(**fields)
        await session.insert()
        return session

    @_translate_errors
    async def save_session(self, session: ClassSession) -> None:
        await session.save()

    @_translate_errors
    async def find_student_by_matric(self, matric_no: str) -> Optional[Student]:
        return await Student.find_one(Student.matric_no == matric_no)

    @_translate_errors
    async def get_student(self, student_id: str) -> Optional[Student]:
        oid = safe_object_id(student_id)
        if not oid:
            return None
        return await Student.get(oid)

    @_translate_errors
    async def update_student_level(self, student: Student, level: int) -> None:
        student.level = level
        student.updated_at = datetime.utcnow()
        await student.save()

    @_translate_errors
    async def get_course(self, course_id: str) -> Optional[Course]:
        oid = safe_object_id(course_id)
        if not oid:
            return None
        return await Course.get(oid)

    @_translate_errors
    async def is_enrolled(self, course_id: str, student_id: str) -> bool:
        enrollment = await Enrollment.find_one(
            Enrollment.course_id == course_id,
            Enrollment.student_id == student_id,
        )
        return enrollment is not None

    @_translate_errors
    async def find_record_by_matric(self, session_id: str, matric_no: str) -> Optional[AttendanceRecord]:
        return await AttendanceRecord.find_one(
            AttendanceRecord.session_id == session_id,
            AttendanceRecord.matric_no_submitted == matric_no,
        )

    @_translate_errors
    async def find_record_by_device(self, session_id: str, signature: str) -> Optional[AttendanceRecord]:
        return await AttendanceRecord.find_one(
            AttendanceRecord.session_id == session_id,
            AttendanceRecord.device_signature == signature,
        )

    @_translate_errors
    async def list_records_with_components(self, session_id: str) -> list[AttendanceRecord]:
        return await AttendanceRecord.find(
            {"session_id": session_id, "is_manual": False, "components": {"$ne": None}}
        ).to_list()

    @_translate_errors
    async def insert_record(self, entry: AttendanceEntry) -> AttendanceRecord:
        record = AttendanceRecord(**entry.model_dump())
        await record.insert()
        return record

    @_translate_errors
    async def upsert_manual_record(self, entry: AttendanceEntry) -> AttendanceRecord:
        # (session, matric) carries a unique index, so it is a safe upsert key
        # for (session, student) and serialises against self-submissions.
        key = {"session_id": entry.session_id, "matric_no_submitted": entry.matric_no_submitted}
        now = datetime.utcnow()
        on_insert = entry.model_dump(mode="python", exclude={"status", "reason"})
        on_insert["created_at"] = now
        update = {
            "$set": {"status": entry.status.value, "reason": entry.reason, "updated_at": now},
            "$setOnInsert": on_insert,
        }
        collection = AttendanceRecord.get_motor_collection()
        try:
            raw = await collection.find_one_and_update(
                key, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # Lost an insert race against a concurrent write; the row exists now.
            await collection.update_one(key, {"$set": update["$set"]})
            return await AttendanceRecord.find_one(key)
        return AttendanceRecord.model_validate(raw)

    @_translate_errors
    async def upsert_device_signature(
        self,
        signature: str,
        student_id: str,
        meta: DeviceMeta,
        now: datetime,
        visitor_id: Optional[str] = None,
        components: Optional[DeviceComponents] = None,
    ) -> None:
        update: dict[str, Any] = {
            "student_id": student_id,
            "last_seen": now,
            "meta": meta.model_dump(),
        }
        if visitor_id:
            update["visitor_id"] = visitor_id
        if components:
            update["components"] = components.model_dump()
        await DeviceSignature.get_motor_collection().update_one(
            {"signature": signature},
            {"$set": update, "$setOnInsert": {"first_seen": now}},
            upsert=True,
        )

    @_translate_errors
    async def list_session_records(
        self, session_id: str, status: Optional[str], skip: int, limit: int
    ) -> tuple[list[AttendanceRecord], int]:
        query: dict[str, Any] = {"session_id": session_id}
        if status:
            query["status"] = status
        records = (
            await AttendanceRecord.find(query)
            .sort(-AttendanceRecord.submitted_at)
            .skip(skip)
            .limit(limit)
            .to_list()
        )
        total = await AttendanceRecord.find(query).count()
        return records, total

    @_translate_errors
    async def session_status_counts(self, session_id: str) -> dict[str, int]:
        rows = await AttendanceRecord.find(AttendanceRecord.session_id == session_id).aggregate(
            [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        ).to_list()
        return {row["_id"]: row["count"] for row in rows}
