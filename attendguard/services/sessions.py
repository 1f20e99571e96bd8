"""Session directory: live-session lookup and the session lifecycle."""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any

from fastapi import HTTPException

from attendguard.config import settings
from attendguard.errors import DuplicateRecordError, SessionNotFound
from attendguard.models.attendance import AttendanceStatus
from attendguard.models.session import SESSION_CODE_LENGTH
from attendguard.services.store import AttendanceStore

logger = logging.getLogger(__name__)


def is_live(session: Any, now: datetime) -> bool:
    return bool(session.is_active) and now < session.expiry_ts


def generate_session_code() -> str:
    low = 10 ** (SESSION_CODE_LENGTH - 1)
    return str(low + secrets.randbelow(9 * low))


def generate_nonce() -> str:
    return secrets.token_hex(16)


async def find_live_session(store: AttendanceStore, code: str, now: datetime) -> Any:
    session = await store.find_live_session(code, now)
    # Re-check liveness locally; a store may hand back a session that expired in between.
    if not session or not is_live(session, now):
        raise SessionNotFound(
            details={
                "hints": [
                    "Please check the session code provided by your lecturer",
                    "Session may have expired or not yet started",
                ]
            }
        )
    return session


async def find_session_for_teacher(store: AttendanceStore, session_id: str, teacher_id: str) -> Any:
    session = await store.find_session_for_teacher(session_id, teacher_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


async def _insert_with_unused_code(store: AttendanceStore, now: datetime, **fields: Any) -> Any:
    """Insert a session under a random code no other live session holds.

    The unique index on active codes decides between concurrent starts; the
    lookup only avoids a round trip for codes that are visibly taken.
    """
    for _ in range(settings.session_code_attempts):
        code = generate_session_code()
        if await store.find_live_session(code, now):
            continue
        await store.release_expired_code(code, now)
        try:
            return await store.insert_session(session_code=code, **fields)
        except DuplicateRecordError as exc:
            if exc.constraint != DuplicateRecordError.LIVE_SESSION_CODE:
                raise
            logger.warning(f"Session code {code} taken concurrently, drawing another")
    raise HTTPException(status_code=503, detail="Could not allocate a session code, try again")


async def start_session(
    store: AttendanceStore,
    course: Any,
    teacher_id: str,
    lat: float,
    lng: float,
    radius_m: int | None = None,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> Any:
    now = now or datetime.utcnow()
    course_id = str(course.id)
    active = await store.find_live_session_for_course(course_id, now)
    if active:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "There is already an active session for this course",
                "session_code": active.session_code,
                "expires_at": active.expiry_ts.isoformat(),
            },
        )
    minutes = duration_minutes or settings.default_session_minutes
    session = await _insert_with_unused_code(
        store,
        now,
        course_id=course_id,
        teacher_id=teacher_id,
        start_ts=now,
        expiry_ts=now + timedelta(minutes=minutes),
        lat=lat,
        lng=lng,
        radius_m=radius_m or settings.default_radius_m,
        nonce=generate_nonce(),
        is_active=True,
    )
    logger.info(f"Session {session.id} started for course {course_id} (code {session.session_code})")
    return session


async def end_session(store: AttendanceStore, session: Any, now: datetime | None = None) -> Any:
    now = now or datetime.utcnow()
    if not is_live(session, now):
        raise HTTPException(status_code=400, detail="Session has already expired")
    session.expiry_ts = now
    session.is_active = False
    await store.save_session(session)
    logger.info(f"Session {session.id} ended early")
    return session


async def session_statistics(store: AttendanceStore, session_id: str) -> dict[str, Any]:
    counts = await store.session_status_counts(session_id)
    total = sum(counts.values())
    present = counts.get(AttendanceStatus.PRESENT.value, 0) + counts.get(AttendanceStatus.MANUAL_PRESENT.value, 0)
    return {
        "total_submissions": total,
        "present_count": present,
        "absent_count": counts.get(AttendanceStatus.ABSENT.value, 0),
        "rejected_count": counts.get(AttendanceStatus.REJECTED.value, 0),
        "attendance_rate": round(present / total * 100) if total else 0,
    }
