from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import require_classroom, require_session
from backend.services.students import add_student, archive_student, get_student, list_students

router = APIRouter()


class StudentCreate(BaseModel):
    first_name: str
    last_initial: str = ""


def require_active_student(student_id: int) -> dict[str, Any]:
    """The roster entry for a check-in or pass request; 404 unknown, 409 archived."""
    student = get_student(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found.")
    if student["is_archived"]:
        raise HTTPException(status_code=409, detail="Student is archived.")
    return student


@router.get("/students")
def students(include_archived: bool = False, _session: dict = Depends(require_session)):
    return list_students(include_archived=include_archived)


@router.get("/students/{student_id}")
def student_detail(student_id: int, _session: dict = Depends(require_session)):
    student = get_student(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found.")
    return student


@router.post("/students")
def create_student(payload: StudentCreate, _session: dict = Depends(require_classroom)):
    try:
        return add_student(payload.first_name, payload.last_initial)
    except ValueError:
        raise HTTPException(status_code=400, detail="First name is required.")


@router.post("/students/{student_id}/archive")
def archive(student_id: int, _session: dict = Depends(require_classroom)):
    student = archive_student(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found.")
    return student
