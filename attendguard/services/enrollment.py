"""Enrollment and level eligibility checks."""
from typing import Optional

from attendguard.services.store import AttendanceStore


async def is_enrolled(store: AttendanceStore, course_id: str, student_id: str) -> bool:
    return await store.is_enrolled(course_id, student_id)


def level_matches(student_level: Optional[int], course_level: Optional[int]) -> bool:
    """A missing level on either side means no constraint."""
    if not student_level or not course_level:
        return True
    return student_level == course_level
