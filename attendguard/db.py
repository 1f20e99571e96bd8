"""MongoDB connection and Beanie document registration."""
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from attendguard.config import settings
from attendguard.models import (
    AttendanceRecord,
    AuditLog,
    ClassSession,
    Course,
    DeviceSignature,
    Enrollment,
    Student,
    Teacher,
)


_client = None


async def db_startup():
    """Connect to MongoDB and initialize Beanie ODM (creates the unique indexes)."""
    global _client
    _client = AsyncIOMotorClient(settings.mongodb_url)
    await init_beanie(
        database=_client[settings.mongodb_db_name],
        document_models=[
            Teacher,
            Course,
            Enrollment,
            Student,
            ClassSession,
            AttendanceRecord,
            DeviceSignature,
            AuditLog,
        ],
    )


async def db_shutdown():
    """Close MongoDB connection."""
    global _client
    if _client:
        _client.close()
        _client = None
