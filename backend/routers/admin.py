from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import require_classroom
from backend.services import schedule as bell
from backend.services.settings import get_effective_settings, update_settings
from database.db import clear_all_tables, clear_attendance

# Settings and resets are console-only; kiosks get 403.
router = APIRouter(dependencies=[Depends(require_classroom)])


class SettingsUpdate(BaseModel):
    day_type: str | None = None
    current_period: int | None = None
    hall_pass_locked: bool | None = None
    blackout_start_minutes: int | None = None
    blackout_end_minutes: int | None = None
    daily_message: str | None = None
    custom_schedule: list[dict] | None = None


@router.get("/settings")
def read_settings():
    return get_effective_settings(bell.local_now().date())


@router.put("/settings")
def write_settings(payload: SettingsUpdate):
    changes = payload.model_dump(exclude_unset=True)
    try:
        return update_settings(changes, bell.local_now().date())
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/admin/reset/attendance")
def reset_attendance():
    ok = clear_attendance()
    if not ok:
        raise HTTPException(status_code=400, detail="Attendance table not found. Check DB schema.")
    return {"ok": True, "message": "Attendance, streaks and hall passes cleared"}


@router.post("/admin/reset/hard")
def reset_hard():
    clear_all_tables()
    return {"ok": True, "message": "Reset complete: roster, records, streaks, passes and settings cleared"}
