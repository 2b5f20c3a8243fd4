from datetime import date
from typing import Any

from backend.config import BELL_SCHEDULES, BLACKOUT_END_MINUTES, BLACKOUT_START_MINUTES
from backend.logging import get_logger
from backend.services.schedule import build_schedules, resolve_default_day_type, validate_custom_periods
from database.db import get_all_settings, set_setting

log = get_logger(__name__)

SETTING_KEYS = (
    "day_type",
    "current_period",
    "hall_pass_locked",
    "blackout_start_minutes",
    "blackout_end_minutes",
    "daily_message",
    "custom_schedule",
)


def get_effective_settings(today: date | None = None) -> dict[str, Any]:
    """Stored settings layered over config defaults."""
    stored = get_all_settings()
    return {
        "day_type": stored.get("day_type") or resolve_default_day_type(today),
        "current_period": int(stored.get("current_period") or 1),
        "hall_pass_locked": bool(stored.get("hall_pass_locked", False)),
        "blackout_start_minutes": int(stored.get("blackout_start_minutes", BLACKOUT_START_MINUTES)),
        "blackout_end_minutes": int(stored.get("blackout_end_minutes", BLACKOUT_END_MINUTES)),
        "daily_message": str(stored.get("daily_message") or ""),
        "custom_schedule": stored.get("custom_schedule"),
    }


def schedules_for(settings: dict[str, Any]) -> dict[str, dict]:
    return build_schedules(settings.get("custom_schedule"))


def _clean(key: str, value: Any) -> Any:
    if key == "day_type":
        if value is None:
            return None
        if value not in BELL_SCHEDULES:
            raise ValueError(f"Unknown day type: {value}")
        return value
    if key == "current_period":
        period = int(value)
        if period < 1:
            raise ValueError("current_period must be at least 1")
        return period
    if key == "hall_pass_locked":
        return bool(value)
    if key in {"blackout_start_minutes", "blackout_end_minutes"}:
        minutes = int(value)
        if minutes < 0:
            raise ValueError(f"{key} cannot be negative")
        return minutes
    if key == "daily_message":
        return str(value or "").strip()
    if key == "custom_schedule":
        if not value:
            return None
        return validate_custom_periods(list(value))
    raise ValueError(f"Unknown setting: {key}")


def update_settings(changes: dict[str, Any], today: date | None = None) -> dict[str, Any]:
    """Validate every change first, then persist them. Raises ValueError."""
    cleaned = {key: _clean(key, value) for key, value in changes.items()}
    for key, value in cleaned.items():
        set_setting(key, value)
    if cleaned:
        log.info("settings_updated", keys=sorted(cleaned))
    return get_effective_settings(today)
