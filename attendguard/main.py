"""AttendGuard - FastAPI entrypoint."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import ServerSelectionTimeoutError

from attendguard.api import attendance, sessions
from attendguard.api.deps import get_audit_dispatcher
from attendguard.config import settings
from attendguard.db import db_shutdown, db_startup
from attendguard.errors import MalformedDeviceInfo, SubmissionRejected

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await db_startup()
    except ServerSelectionTimeoutError as e:
        logger.error(f"MongoDB is not reachable at {settings.mongodb_url}")
        raise RuntimeError("MongoDB connection failed. Start MongoDB (e.g. docker compose up -d).") from e
    yield
    await get_audit_dispatcher().drain()
    await db_shutdown()


app = FastAPI(
    title=settings.app_name,
    description="Geofenced classroom attendance with device and duplicate fraud checks",
    version="0.1.0",
    lifespan=lifespan,
)


def _rejection_body(exc: SubmissionRejected) -> dict:
    return {"success": False, "error": exc.message, "kind": exc.kind.value, "details": exc.details}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    # device_info problems are reported as their own rejection kind, before the pipeline runs.
    if any("device_info" in err.get("loc", ()) for err in errors):
        rejection = MalformedDeviceInfo(details={"errors": errors})
        return JSONResponse(status_code=rejection.status_code, content=_rejection_body(rejection))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": errors},
    )


@app.exception_handler(SubmissionRejected)
async def rejection_exception_handler(request: Request, exc: SubmissionRejected):
    return JSONResponse(status_code=exc.status_code, content=_rejection_body(exc))


app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(attendance.router, prefix="/api/attendance", tags=["Attendance"])
app.include_router(sessions.router, prefix="/api", tags=["Sessions"])


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name}
