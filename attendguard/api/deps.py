"""Shared dependencies: JWT teacher auth, store and pipeline injection."""
from typing import Annotated, Optional

from beanie import PydanticObjectId
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from attendguard.config import settings
from attendguard.models.teacher import Teacher
from attendguard.services.audit import AuditDispatcher
from attendguard.services.store import AttendanceStore, MongoAttendanceStore, safe_object_id
from attendguard.services.submission import ClientContext, SubmissionPipeline

security = HTTPBearer(auto_error=False)

_store = MongoAttendanceStore()
_audit_dispatcher = AuditDispatcher()


def get_store() -> AttendanceStore:
    return _store


def get_audit_dispatcher() -> AuditDispatcher:
    return _audit_dispatcher


def get_pipeline(
    store: Annotated[AttendanceStore, Depends(get_store)],
    audit_dispatcher: Annotated[AuditDispatcher, Depends(get_audit_dispatcher)],
) -> SubmissionPipeline:
    return SubmissionPipeline(store, audit_dispatcher)


def get_client_context(request: Request) -> ClientContext:
    # One trusted proxy hop: the right-most forwarded address is the client.
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[-1].strip()
    else:
        ip = request.client.host if request.client else None
    return ClientContext(ip=ip, user_agent=request.headers.get("user-agent", ""))


async def get_current_teacher(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Teacher:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    teacher_id: str = payload.get("sub")
    if not teacher_id or payload.get("role", "teacher") != "teacher":
        raise HTTPException(status_code=401, detail="Invalid token")
    oid: PydanticObjectId | None = safe_object_id(teacher_id)
    teacher = await Teacher.get(oid) if oid else None
    if not teacher or not teacher.is_active:
        raise HTTPException(status_code=401, detail="Teacher not found or inactive")
    return teacher


# Type aliases for route injection
CurrentTeacher = Annotated[Teacher, Depends(get_current_teacher)]
Store = Annotated[AttendanceStore, Depends(get_store)]
Pipeline = Annotated[SubmissionPipeline, Depends(get_pipeline)]
Audit = Annotated[AuditDispatcher, Depends(get_audit_dispatcher)]
Client = Annotated[ClientContext, Depends(get_client_context)]
