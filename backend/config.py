import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("HALLPASS_DB_PATH", BASE_DIR / "database" / "hallpass.db"))
DEVICE_SECRET = os.getenv("HALLPASS_DEVICE_SECRET", "hallpass-device-secret-change-me").strip()
SIGNING_KEY = (
    os.getenv("HALLPASS_SIGNING_KEY", "").strip()
    or DEVICE_SECRET
    or secrets.token_urlsafe(32)
)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("HALLPASS_AUTH_TOKEN_TTL_SECONDS", "43200"))
# Consoles run the classroom; kiosks only check students in and hand out passes.
DEVICE_ROLES = ("classroom", "kiosk")


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_minutes(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        return max(0, int(value.strip()))
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("HALLPASS_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("HALLPASS_ENABLE_DEBUG_ENDPOINTS"), False)

LOG_JSON = _parse_bool(os.getenv("HALLPASS_LOG_JSON"), False)
LOG_LEVEL = os.getenv("HALLPASS_LOG_LEVEL", "INFO").strip() or "INFO"

# Check-in / hall pass timing rules
GRACE_MINUTES = _parse_minutes(os.getenv("HALLPASS_GRACE_MINUTES"), 2)
COOLDOWN_MINUTES = _parse_minutes(os.getenv("HALLPASS_COOLDOWN_MINUTES"), 20)
BLACKOUT_START_MINUTES = _parse_minutes(os.getenv("HALLPASS_BLACKOUT_START_MINUTES"), 10)
BLACKOUT_END_MINUTES = _parse_minutes(os.getenv("HALLPASS_BLACKOUT_END_MINUTES"), 10)
DEFAULT_COMMITTED_MINUTES = _parse_minutes(os.getenv("HALLPASS_DEFAULT_COMMITTED_MINUTES"), 5)
MAX_COMMITTED_MINUTES = _parse_minutes(os.getenv("HALLPASS_MAX_COMMITTED_MINUTES"), 15)
PASS_REASONS = _parse_csv(
    os.getenv("HALLPASS_PASS_REASONS"),
    ["bathroom", "water", "locker", "office", "other"],
)


# Britannia Secondary School bell schedule 2024-2025
BELL_SCHEDULES: dict[str, dict] = {
    "monday": {
        "name": "Monday (No FIT)",
        "periods": [
            {"period": 1, "start": "08:40", "end": "10:00"},
            {"period": 2, "start": "10:10", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:35"},
            {"period": 4, "start": "13:45", "end": "15:05"},
        ],
        "lunch": {"start": "11:30", "end": "12:15"},
    },
    "tuesday": {
        "name": "Tuesday (PM FIT)",
        "periods": [
            {"period": 1, "start": "08:40", "end": "10:00"},
            {"period": 2, "start": "10:10", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:15"},
            {"period": 4, "start": "13:25", "end": "14:25"},
        ],
        "fit": {"start": "14:25", "end": "15:05"},
        "lunch": {"start": "11:30", "end": "12:15"},
    },
    "wednesday": {
        "name": "Wednesday (AM FIT)",
        "fit": {"start": "08:40", "end": "09:20"},
        "periods": [
            {"period": 1, "start": "09:20", "end": "10:20"},
            {"period": 2, "start": "10:30", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:35"},
            {"period": 4, "start": "13:45", "end": "15:05"},
        ],
        "lunch": {"start": "11:30", "end": "12:15"},
    },
    "thursday": {
        "name": "Thursday (PM FIT)",
        "periods": [
            {"period": 1, "start": "08:40", "end": "10:00"},
            {"period": 2, "start": "10:10", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:15"},
            {"period": 4, "start": "13:25", "end": "14:05"},
        ],
        "fit": {"start": "14:05", "end": "15:05"},
        "lunch": {"start": "11:30", "end": "12:15"},
    },
    "friday": {
        "name": "Friday (AM FIT)",
        "fit": {"start": "08:40", "end": "09:20"},
        "periods": [
            {"period": 1, "start": "09:20", "end": "10:20"},
            {"period": 2, "start": "10:30", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:35"},
            {"period": 4, "start": "13:45", "end": "15:05"},
        ],
        "lunch": {"start": "11:30", "end": "12:15"},
    },
    "collab-am": {
        "name": "Collab Day (AM)",
        "collab": {"start": "08:40", "end": "10:00"},
        "periods": [
            {"period": 1, "start": "10:00", "end": "10:40"},
            {"period": 2, "start": "10:50", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:35"},
            {"period": 4, "start": "13:45", "end": "15:05"},
        ],
        "lunch": {"start": "11:30", "end": "12:15"},
    },
    "collab-pm": {
        "name": "Collab Day (PM)",
        "periods": [
            {"period": 1, "start": "08:40", "end": "10:00"},
            {"period": 2, "start": "10:10", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "12:55"},
            {"period": 4, "start": "13:05", "end": "13:45"},
        ],
        "collab": {"start": "13:45", "end": "15:05"},
        "lunch": {"start": "11:30", "end": "12:15"},
    },
    "early": {
        "name": "Early Dismissal",
        "periods": [
            {"period": 1, "start": "08:40", "end": "10:00"},
            {"period": 2, "start": "10:10", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:05"},
            {"period": 4, "start": "13:15", "end": "14:05"},
        ],
        "lunch": {"start": "11:30", "end": "12:15"},
        "dismissal": "14:05",
    },
    # Overridden at runtime by the "custom_schedule" setting.
    "custom": {
        "name": "Custom",
        "periods": [
            {"period": 1, "start": "08:40", "end": "10:00"},
            {"period": 2, "start": "10:10", "end": "11:30"},
            {"period": 3, "start": "12:15", "end": "13:35"},
            {"period": 4, "start": "13:45", "end": "15:05"},
        ],
        "lunch": {"start": "11:30", "end": "12:15"},
    },
}

WEEKDAY_DAY_TYPES = ["monday", "tuesday", "wednesday", "thursday", "friday"]
DEFAULT_DAY_TYPE = WEEKDAY_DAY_TYPES[0]
