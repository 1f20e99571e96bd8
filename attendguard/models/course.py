"""Courses and student enrollments."""
from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import Field
from pymongo import IndexModel


class Course(Document):
    teacher_id: Indexed(str)
    course_code: str
    title: str
    level: Optional[int] = None  # 100..600; None means any level may attend
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "courses"
        use_state_management = True
        indexes = [
            IndexModel([("teacher_id", 1), ("course_code", 1)], unique=True, name="teacher_course_code_unique"),
        ]


class Enrollment(Document):
    """Links a student to a course. Created by the teacher, read-only here."""

    course_id: str
    student_id: str
    added_by: str  # teacher_id
    added_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "course_students"
        indexes = [
            IndexModel([("course_id", 1), ("student_id", 1)], unique=True, name="course_student_unique"),
        ]
