from fastapi import APIRouter, Depends, HTTPException

from backend import config
from backend.security import require_session
from backend.services import schedule as bell
from backend.services.settings import get_effective_settings, schedules_for

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: dict = Depends(require_session)):
    if not config.ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(config.DB_PATH)}


@router.get("/config/schedule")
def schedule_config():
    settings = get_effective_settings(bell.local_now().date())
    return {
        "schedules": schedules_for(settings),
        "grace_minutes": config.GRACE_MINUTES,
        "cooldown_minutes": config.COOLDOWN_MINUTES,
        "blackout_start_minutes": settings["blackout_start_minutes"],
        "blackout_end_minutes": settings["blackout_end_minutes"],
        "default_committed_minutes": config.DEFAULT_COMMITTED_MINUTES,
        "max_committed_minutes": config.MAX_COMMITTED_MINUTES,
        "pass_reasons": config.PASS_REASONS,
    }


@router.get("/schedule/status")
def schedule_status(day_type: str | None = None, period: int | None = None):
    """Clock snapshot a display loop polls: window, countdown and pass blackout."""
    now = bell.local_now()
    settings = get_effective_settings(now.date())
    schedules = schedules_for(settings)
    active_day_type = day_type or settings["day_type"]
    active_period = period or settings["current_period"]

    window = bell.get_period_window(active_day_type, active_period, today=now.date(), schedules=schedules)
    countdown = bell.time_until_class(active_day_type, active_period, now, schedules=schedules)
    blackout = bell.is_pass_blackout(
        active_day_type,
        active_period,
        now,
        settings["blackout_start_minutes"],
        settings["blackout_end_minutes"],
        schedules=schedules,
    )
    return {
        "now": now.isoformat(timespec="seconds"),
        "day_type": active_day_type,
        "day_name": schedules.get(active_day_type, {}).get("name"),
        "period": active_period,
        "window": bell.serialize_window(window),
        "countdown": countdown,
        "countdown_display": bell.format_countdown(countdown["seconds"]) if countdown else None,
        "blackout": blackout,
        "hall_pass_locked": settings["hall_pass_locked"],
        "daily_message": settings["daily_message"],
    }
