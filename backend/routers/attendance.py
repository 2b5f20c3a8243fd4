from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel

from backend.routers.students import require_active_student
from backend.security import require_classroom
from backend.services import schedule as bell
from backend.services.attendance import (
    check_in,
    export_attendance_csv,
    get_attendance_for_date,
    get_attendance_stats,
    get_student_attendance_history,
)
from backend.services.settings import get_effective_settings, schedules_for
from backend.services.streaks import get_streak

router = APIRouter()


class CheckInRequest(BaseModel):
    student_id: int
    period: int | None = None
    day_type: str | None = None
    source: str = "self"


def _feedback(verdict: dict, streak: dict, created: bool) -> str:
    if not created:
        return "Already checked in."
    if verdict["status"] == "no_class":
        return "No class scheduled for this period."
    if verdict["status"] == "late":
        return f"Late by {verdict['minutes_late']}m {verdict['seconds_late']}s."
    count = streak["current_streak"]
    return f"On time! {count}-day streak." if count > 1 else "On time!"


@router.post("/attendance/check-in")
def attendance_check_in(payload: CheckInRequest):
    if payload.student_id < 1:
        raise HTTPException(status_code=400, detail="Invalid student ID.")
    if payload.period is not None and payload.period < 1:
        raise HTTPException(status_code=400, detail="Invalid period.")
    require_active_student(payload.student_id)

    now = bell.local_now()
    settings = get_effective_settings(now.date())
    result = check_in(
        payload.student_id,
        settings["current_period"] if payload.period is None else payload.period,
        now,
        payload.day_type or settings["day_type"],
        source=payload.source.strip() or "self",
        schedules=schedules_for(settings),
    )
    verdict = result["verdict"]
    return {
        "created": result["created"],
        "record": result["record"],
        "verdict": {
            "status": verdict["status"],
            "on_time": verdict["on_time"],
            "minutes_late": verdict["minutes_late"],
            "seconds_late": verdict["seconds_late"],
            "window": bell.serialize_window(verdict["window"]),
        },
        "streak": result["streak"],
        "message": _feedback(verdict, result["streak"], result["created"]),
    }


@router.get("/attendance")
def attendance(date: str | None = None, _session: dict = Depends(require_classroom)):
    day = date or bell.local_now().date().isoformat()
    return get_attendance_for_date(day)


@router.get("/attendance/stats")
def attendance_stats(
    days: int = Query(default=30, ge=1, le=366),
    _session: dict = Depends(require_classroom),
):
    return get_attendance_stats(days, today=bell.local_now().date())


@router.get("/students/{student_id}/attendance")
def student_attendance(
    student_id: int,
    days: int = Query(default=30, ge=1, le=366),
    _session: dict = Depends(require_classroom),
):
    return {
        "student_id": student_id,
        "days": days,
        "rows": get_student_attendance_history(student_id, days, today=bell.local_now().date()),
    }


@router.get("/students/{student_id}/streak")
def student_streak(student_id: int):
    return get_streak(student_id)


@router.get("/attendance/export")
def attendance_export(
    days: int = Query(default=30, ge=1, le=366),
    _session: dict = Depends(require_classroom),
):
    today = bell.local_now().date()
    return Response(
        content=export_attendance_csv(days, today=today),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=attendance_{today.isoformat()}.csv"},
    )
