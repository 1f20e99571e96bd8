"""Teacher session lifecycle: start, inspect, end."""
from datetime import datetime

from fastapi import APIRouter, HTTPException

from attendguard.api.deps import Audit, CurrentTeacher, Store
from attendguard.models.session import SessionOut, SessionStart
from attendguard.services import audit
from attendguard.services.audit import AuditEvent
from attendguard.services.sessions import end_session, find_session_for_teacher, is_live, session_statistics, start_session

router = APIRouter()


def session_out(session, now: datetime) -> SessionOut:
    return SessionOut(
        id=str(session.id),
        course_id=session.course_id,
        teacher_id=session.teacher_id,
        session_code=session.session_code,
        start_ts=session.start_ts,
        expiry_ts=session.expiry_ts,
        lat=session.lat,
        lng=session.lng,
        radius_m=session.radius_m,
        is_active=session.is_active,
        is_live=is_live(session, now),
    )


@router.post("/courses/{course_id}/sessions", status_code=201)
async def start_course_session(
    course_id: str, data: SessionStart, teacher: CurrentTeacher, store: Store, audit_dispatcher: Audit
):
    course = await store.get_course(course_id)
    if not course or course.teacher_id != str(teacher.id):
        raise HTTPException(status_code=404, detail="Course not found")
    session = await start_session(
        store,
        course,
        str(teacher.id),
        data.lat,
        data.lng,
        radius_m=data.radius_m,
        duration_minutes=data.duration_minutes,
    )
    audit_dispatcher.emit(
        AuditEvent(
            action=audit.SESSION_STARTED,
            actor_id=str(teacher.id),
            payload={"session_id": str(session.id), "course_id": course_id, "session_code": session.session_code},
        )
    )
    return {
        "message": "Attendance session started successfully",
        "session": session_out(session, datetime.utcnow()),
    }


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, teacher: CurrentTeacher, store: Store):
    session = await find_session_for_teacher(store, session_id, str(teacher.id))
    return {
        "session": session_out(session, datetime.utcnow()),
        "statistics": await session_statistics(store, str(session.id)),
    }


@router.patch("/sessions/{session_id}/end")
async def end_course_session(session_id: str, teacher: CurrentTeacher, store: Store, audit_dispatcher: Audit):
    session = await find_session_for_teacher(store, session_id, str(teacher.id))
    now = datetime.utcnow()
    session = await end_session(store, session, now)
    audit_dispatcher.emit(
        AuditEvent(action=audit.SESSION_ENDED, actor_id=str(teacher.id), payload={"session_id": session_id})
    )
    return {"message": "Session ended successfully", "session": session_out(session, now)}
