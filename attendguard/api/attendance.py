"""Student submission endpoint and teacher-facing attendance records."""
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from attendguard.api.deps import Client, CurrentTeacher, Pipeline, Store
from attendguard.models.attendance import AttendanceOut, AttendanceStatus, AttendanceSubmit, ManualMarkRequest
from attendguard.services.sessions import find_session_for_teacher
from attendguard.services.submission import Accepted

router = APIRouter()


def record_out(record) -> AttendanceOut:
    return AttendanceOut(
        id=str(record.id),
        session_id=record.session_id,
        course_id=record.course_id,
        student_id=record.student_id,
        matric_no_submitted=record.matric_no_submitted,
        status=record.status,
        reason=record.reason,
        distance_m=record.distance_m,
        accuracy=record.accuracy,
        submitted_at=record.submitted_at,
        is_manual=record.is_manual,
    )


@router.post("/submit", status_code=201)
async def submit_attendance(data: AttendanceSubmit, pipeline: Pipeline, client: Client):
    """Public endpoint: a student marks attendance from their own device."""
    result = await pipeline.submit(data, client)
    if isinstance(result, Accepted):
        return {
            "success": True,
            "message": "Attendance submitted successfully",
            "record": result.model_dump(mode="json"),
        }
    return JSONResponse(
        status_code=result.status_code,
        content={
            "success": False,
            "error": result.message,
            "kind": result.kind.value,
            "details": result.details,
        },
    )


@router.get("/session/{session_id}")
async def list_session_attendance(
    session_id: str,
    teacher: CurrentTeacher,
    store: Store,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[AttendanceStatus] = None,
):
    """Paginated attendance for a session owned by the requesting teacher."""
    await find_session_for_teacher(store, session_id, str(teacher.id))
    records, total = await store.list_session_records(
        session_id, status.value if status else None, (page - 1) * limit, limit
    )
    total_pages = (total + limit - 1) // limit
    return {
        "attendance": [record_out(r) for r in records],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_records": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@router.patch("/sessions/{session_id}/students/{student_id}/mark")
async def mark_attendance_manually(
    session_id: str,
    student_id: str,
    data: ManualMarkRequest,
    teacher: CurrentTeacher,
    store: Store,
    pipeline: Pipeline,
):
    """Teacher override for one student; creates or updates the session record."""
    session = await find_session_for_teacher(store, session_id, str(teacher.id))
    record = await pipeline.mark_manual(str(session.id), student_id, data.status, data.reason, actor_id=str(teacher.id))
    return {"message": "Attendance marked successfully", "attendance": record_out(record)}
