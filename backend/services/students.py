import sqlite3
from datetime import datetime
from typing import Any

from backend.logging import get_logger
from database.db import create, get_all, get_all_by_index, get_by_key, upsert

log = get_logger(__name__)


def add_student(
    first_name: str,
    last_initial: str = "",
    *,
    now: datetime | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict[str, Any]:
    first = (first_name or "").strip()
    if not first:
        raise ValueError("first_name is required")

    student = {
        "first_name": first,
        "last_initial": (last_initial or "").strip()[:1].upper(),
        "is_archived": False,
        "created_at": (now or datetime.now()).isoformat(timespec="seconds"),
    }
    student["id"] = create("students", student, conn=conn)
    log.info("student_added", student_id=student["id"])
    return student


def get_student(student_id: int, *, conn: sqlite3.Connection | None = None) -> dict[str, Any] | None:
    return get_by_key("students", student_id, conn=conn)


def list_students(
    *,
    include_archived: bool = False,
    conn: sqlite3.Connection | None = None,
) -> list[dict[str, Any]]:
    """Roster ordered the way the class list reads: last initial, then first name."""
    if include_archived:
        return get_all("students", conn=conn)
    return get_all_by_index("students", "archived", False, conn=conn)


def archive_student(student_id: int, *, conn: sqlite3.Connection | None = None) -> dict[str, Any] | None:
    """Hide a student from the roster. Their history stays; None if unknown."""
    student = get_student(student_id, conn=conn)
    if not student:
        return None
    if not student["is_archived"]:
        student["is_archived"] = True
        upsert("students", student, conn=conn)
        log.info("student_archived", student_id=student_id)
    return student


def display_name(student: dict[str, Any] | None) -> str:
    if not student:
        return ""
    initial = student.get("last_initial") or ""
    return f"{student['first_name']} {initial}." if initial else str(student["first_name"])
