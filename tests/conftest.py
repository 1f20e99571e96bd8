import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("RECEIPT_SECRET_KEY", "test-receipt-secret")

import asyncio
import itertools
from datetime import datetime, timedelta
from math import degrees
from typing import Any, Optional

import pytest
from pydantic import BaseModel, Field

from attendguard.errors import DuplicateRecordError, PersistenceError
from attendguard.models.attendance import AttendanceEntry, DeviceComponents
from attendguard.models.device import DeviceMeta
from attendguard.services.audit import AuditDispatcher
from attendguard.services.geo import EARTH_RADIUS_M
from attendguard.services.receipt import truncate_to_millis
from attendguard.services.submission import SubmissionPipeline

CENTER = (6.5244, 3.3792)
LIVE_CODE = "4821"
EXPIRED_CODE = "1111"


def offset_north(lat: float, meters: float) -> float:
    """Latitude `meters` due north of `lat` on the haversine sphere."""
    return lat + degrees(meters / EARTH_RADIUS_M)


class FakeTeacher(BaseModel):
    id: str
    name: str
    is_active: bool = True


class FakeCourse(BaseModel):
    id: str
    teacher_id: str
    course_code: str
    title: str
    level: Optional[int] = None


class FakeStudent(BaseModel):
    id: str
    matric_no: str
    name: str
    level: Optional[int] = None


class FakeSession(BaseModel):
    id: str
    course_id: str
    teacher_id: str
    session_code: str
    start_ts: datetime
    expiry_ts: datetime
    lat: float
    lng: float
    radius_m: float = 100
    nonce: str
    is_active: bool = True


class FakeRecord(AttendanceEntry):
    id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class FakeDeviceSignature(BaseModel):
    signature: str
    student_id: Optional[str] = None
    first_seen: datetime
    last_seen: datetime
    visitor_id: Optional[str] = None
    meta: DeviceMeta
    components: Optional[DeviceComponents] = None


class MemoryStore:
    """AttendanceStore kept in dicts, enforcing the same unique keys as the Mongo indexes.

    Every query yields to the event loop first, so concurrent pipelines
    interleave the way they would against a real database.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.courses: dict[str, FakeCourse] = {}
        self.students: dict[str, FakeStudent] = {}
        self.sessions: dict[str, FakeSession] = {}
        self.enrollments: set[tuple[str, str]] = set()
        self.records: list[FakeRecord] = []
        self.devices: dict[str, FakeDeviceSignature] = {}
        self.skip_prechecks = False
        self.fail_inserts = False
        self.fail_device_upserts = False

    def next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def add_course(self, **fields) -> FakeCourse:
        course = FakeCourse(id=self.next_id("course"), **fields)
        self.courses[course.id] = course
        return course

    def add_student(self, **fields) -> FakeStudent:
        student = FakeStudent(id=self.next_id("student"), **fields)
        self.students[student.id] = student
        return student

    def add_session(self, **fields) -> FakeSession:
        session = FakeSession(id=self.next_id("session"), **fields)
        self.sessions[session.id] = session
        return session

    def enroll(self, course: FakeCourse, student: FakeStudent) -> None:
        self.enrollments.add((course.id, student.id))

    @staticmethod
    async def _yield() -> None:
        await asyncio.sleep(0)

    @staticmethod
    def _live(session: FakeSession, now: datetime) -> bool:
        return session.is_active and session.expiry_ts > now

    async def find_live_session(self, code: str, now: datetime) -> Any:
        await self._yield()
        return next((s for s in self.sessions.values() if s.session_code == code and self._live(s, now)), None)

    async def find_live_session_for_course(self, course_id: str, now: datetime) -> Any:
        await self._yield()
        return next((s for s in self.sessions.values() if s.course_id == course_id and self._live(s, now)), None)

    async def get_session(self, session_id: str) -> Any:
        await self._yield()
        return self.sessions.get(session_id)

    async def find_session_for_teacher(self, session_id: str, teacher_id: str) -> Any:
        await self._yield()
        session = self.sessions.get(session_id)
        return session if session and session.teacher_id == teacher_id else None

    async def release_expired_code(self, code: str, now: datetime) -> None:
        await self._yield()
        for s in self.sessions.values():
            if s.session_code == code and s.is_active and s.expiry_ts <= now:
                s.is_active = False

    async def insert_session(self, **fields: Any) -> Any:
        await self._yield()
        # Partial unique index: one active session per code.
        if any(s.is_active and s.session_code == fields["session_code"] for s in self.sessions.values()):
            raise DuplicateRecordError(DuplicateRecordError.LIVE_SESSION_CODE)
        return self.add_session(**fields)

    async def save_session(self, session: Any) -> None:
        await self._yield()
        self.sessions[session.id] = session

    async def find_student_by_matric(self, matric_no: str) -> Any:
        await self._yield()
        return next((s for s in self.students.values() if s.matric_no == matric_no), None)

    async def get_student(self, student_id: str) -> Any:
        await self._yield()
        return self.students.get(student_id)

    async def update_student_level(self, student: Any, level: int) -> None:
        await self._yield()
        student.level = level

    async def get_course(self, course_id: str) -> Any:
        await self._yield()
        return self.courses.get(course_id)

    async def is_enrolled(self, course_id: str, student_id: str) -> bool:
        await self._yield()
        return (course_id, student_id) in self.enrollments

    async def find_record_by_matric(self, session_id: str, matric_no: str) -> Any:
        await self._yield()
        if self.skip_prechecks:
            return None
        return self._by_matric(session_id, matric_no)

    async def find_record_by_device(self, session_id: str, signature: str) -> Any:
        await self._yield()
        if self.skip_prechecks:
            return None
        return self._by_device(session_id, signature)

    def _by_matric(self, session_id: str, matric_no: str) -> Optional[FakeRecord]:
        return next(
            (r for r in self.records if r.session_id == session_id and r.matric_no_submitted == matric_no), None
        )

    def _by_device(self, session_id: str, signature: str) -> Optional[FakeRecord]:
        return next(
            (r for r in self.records if r.session_id == session_id and r.device_signature == signature), None
        )

    async def list_records_with_components(self, session_id: str) -> list[Any]:
        await self._yield()
        return [r for r in self.records if r.session_id == session_id and not r.is_manual and r.components]

    def _check_unique(self, entry: AttendanceEntry) -> None:
        if self._by_matric(entry.session_id, entry.matric_no_submitted):
            raise DuplicateRecordError(DuplicateRecordError.SESSION_MATRIC)
        if self._by_device(entry.session_id, entry.device_signature):
            raise DuplicateRecordError(DuplicateRecordError.SESSION_DEVICE)

    async def insert_record(self, entry: AttendanceEntry) -> Any:
        await self._yield()
        if self.fail_inserts:
            raise PersistenceError("connection reset")
        # No await between the check and the append: atomic on the event loop.
        try:
            self._check_unique(entry)
        except DuplicateRecordError:
            # The racing writer has committed; reads from here on see its row.
            self.skip_prechecks = False
            raise
        record = FakeRecord(id=self.next_id("record"), **entry.model_dump())
        self.records.append(record)
        return record

    async def upsert_manual_record(self, entry: AttendanceEntry) -> Any:
        await self._yield()
        existing = self._by_matric(entry.session_id, entry.matric_no_submitted)
        if existing:
            existing.status = entry.status
            existing.reason = entry.reason
            existing.updated_at = datetime.utcnow()
            return existing
        self._check_unique(entry)
        record = FakeRecord(id=self.next_id("record"), **entry.model_dump())
        self.records.append(record)
        return record

    async def upsert_device_signature(
        self,
        signature: str,
        student_id: str,
        meta: DeviceMeta,
        now: datetime,
        visitor_id: Optional[str] = None,
        components: Optional[DeviceComponents] = None,
    ) -> None:
        await self._yield()
        if self.fail_device_upserts:
            raise PersistenceError("device cache unavailable")
        cached = self.devices.get(signature)
        if cached is None:
            self.devices[signature] = FakeDeviceSignature(
                signature=signature,
                student_id=student_id,
                first_seen=now,
                last_seen=now,
                visitor_id=visitor_id,
                meta=meta,
                components=components,
            )
            return
        cached.student_id = student_id
        cached.last_seen = now
        cached.meta = meta
        if visitor_id:
            cached.visitor_id = visitor_id
        if components:
            cached.components = components

    async def list_session_records(
        self, session_id: str, status: Optional[str], skip: int, limit: int
    ) -> tuple[list[Any], int]:
        await self._yield()
        rows = [r for r in self.records if r.session_id == session_id and (not status or r.status.value == status)]
        rows.sort(key=lambda r: r.submitted_at, reverse=True)
        return rows[skip : skip + limit], len(rows)

    async def session_status_counts(self, session_id: str) -> dict[str, int]:
        await self._yield()
        counts: dict[str, int] = {}
        for r in self.records:
            if r.session_id == session_id:
                counts[r.status.value] = counts.get(r.status.value, 0) + 1
        return counts


@pytest.fixture
def now() -> datetime:
    return truncate_to_millis(datetime.utcnow())


@pytest.fixture
def teacher() -> FakeTeacher:
    return FakeTeacher(id="teacher1", name="Dr. Adeyemi")


@pytest.fixture
def store(now, teacher) -> MemoryStore:
    store = MemoryStore()
    course = store.add_course(teacher_id=teacher.id, course_code="CSC301", title="Operating Systems")
    other_course = store.add_course(teacher_id=teacher.id, course_code="CSC305", title="Compilers")
    first = store.add_student(matric_no="CSC/2021/001", name="Ada Obi")
    second = store.add_student(matric_no="CSC/2021/002", name="Bola Ade")
    store.add_student(matric_no="CSC/2021/003", name="Chidi Eze")
    store.enroll(course, first)
    store.enroll(course, second)
    store.add_session(
        course_id=course.id,
        teacher_id=teacher.id,
        session_code=LIVE_CODE,
        start_ts=now - timedelta(minutes=5),
        expiry_ts=now + timedelta(minutes=55),
        lat=CENTER[0],
        lng=CENTER[1],
        radius_m=100,
        nonce="a3f1c9e2b4d6f8a0a3f1c9e2b4d6f8a0",
    )
    store.add_session(
        course_id=other_course.id,
        teacher_id=teacher.id,
        session_code=EXPIRED_CODE,
        start_ts=now - timedelta(hours=2),
        expiry_ts=now - timedelta(hours=1),
        lat=CENTER[0],
        lng=CENTER[1],
        radius_m=100,
        nonce="0f9e8d7c6b5a49382716a5b4c3d2e1f0",
    )
    return store


@pytest.fixture
def course(store) -> FakeCourse:
    return next(c for c in store.courses.values() if c.course_code == "CSC301")


@pytest.fixture
def live_session(store) -> FakeSession:
    return next(s for s in store.sessions.values() if s.session_code == LIVE_CODE)


@pytest.fixture
def students(store) -> dict[str, FakeStudent]:
    return {s.matric_no: s for s in store.students.values()}


@pytest.fixture
def audit_events() -> list:
    return []


@pytest.fixture
def audit_dispatcher(audit_events) -> AuditDispatcher:
    async def sink(event):
        audit_events.append(event)

    return AuditDispatcher(sink)


@pytest.fixture
def pipeline(store, audit_dispatcher, now) -> SubmissionPipeline:
    return SubmissionPipeline(store, audit_dispatcher, clock=lambda: now, persist_rejected=True)
