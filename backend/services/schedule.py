"""
Bell-schedule time math: period windows, countdowns, arrival verdicts and
hall-pass blackout windows.

Everything here is a pure function of its arguments. Windows are anchored to
the calendar date of the instant being evaluated (``today`` for lookups), so a
window is always "that day's" occurrence of the period.
"""

import math
from datetime import date, datetime, time, timedelta
from typing import Literal, TypedDict

from backend.config import (
    BELL_SCHEDULES,
    BLACKOUT_END_MINUTES,
    BLACKOUT_START_MINUTES,
    DEFAULT_DAY_TYPE,
    GRACE_MINUTES,
    WEEKDAY_DAY_TYPES,
)

ArrivalStatus = Literal["on_time", "late", "no_class"]


class PeriodWindow(TypedDict):
    day_type: str
    period: int
    start: datetime
    end: datetime


class ClassCountdown(TypedDict):
    seconds: int
    minutes: int
    is_started: bool
    is_ended: bool


class ArrivalVerdict(TypedDict):
    status: ArrivalStatus
    on_time: bool
    minutes_late: int
    seconds_late: int
    window: PeriodWindow | None


class Blackout(TypedDict):
    blackout: bool
    reason: str | None


def local_now() -> datetime:
    return datetime.now()


def _parse_hhmm(value: str) -> time:
    hh, _, mm = str(value).partition(":")
    return time(int(hh), int(mm or 0))


def resolve_default_day_type(today: date | None = None) -> str:
    # Weekends fall back to the first weekday of the cycle; there is no
    # "no school" day type.
    day = today or date.today()
    weekday = day.weekday()
    if weekday >= len(WEEKDAY_DAY_TYPES):
        return DEFAULT_DAY_TYPE
    return WEEKDAY_DAY_TYPES[weekday]


def build_schedules(custom_periods: list[dict] | None = None) -> dict[str, dict]:
    """Return the bell schedule table with the ``custom`` day type overridden."""
    if not custom_periods:
        return BELL_SCHEDULES
    schedules = dict(BELL_SCHEDULES)
    custom = dict(schedules.get("custom", {"name": "Custom"}))
    custom["periods"] = sorted(
        (
            {"period": int(p["period"]), "start": str(p["start"]), "end": str(p["end"])}
            for p in custom_periods
        ),
        key=lambda p: p["period"],
    )
    schedules["custom"] = custom
    return schedules


def validate_custom_periods(periods: list[dict]) -> list[dict]:
    """Normalise a custom schedule, raising ValueError on malformed entries."""
    seen: set[int] = set()
    out: list[dict] = []
    for entry in periods:
        try:
            number = int(entry["period"])
            start = _parse_hhmm(entry["start"])
            end = _parse_hhmm(entry["end"])
        except (KeyError, TypeError, ValueError):
            raise ValueError(f"Invalid period entry: {entry!r}")
        if number in seen:
            raise ValueError(f"Duplicate period number: {number}")
        if end <= start:
            raise ValueError(f"Period {number} ends before it starts.")
        seen.add(number)
        out.append({"period": number, "start": start.strftime("%H:%M"), "end": end.strftime("%H:%M")})
    return sorted(out, key=lambda p: p["period"])


def get_period_window(
    day_type: str,
    period: int,
    *,
    today: date | None = None,
    schedules: dict[str, dict] | None = None,
) -> PeriodWindow | None:
    """None means "no scheduled class" for this day type / period number."""
    table = schedules if schedules is not None else BELL_SCHEDULES
    schedule = table.get(day_type)
    if not schedule:
        return None

    entry = next((p for p in schedule.get("periods", []) if int(p["period"]) == period), None)
    if entry is None:
        return None

    anchor = today or date.today()
    return {
        "day_type": day_type,
        "period": int(period),
        "start": datetime.combine(anchor, _parse_hhmm(entry["start"])),
        "end": datetime.combine(anchor, _parse_hhmm(entry["end"])),
    }


def time_until_class(
    day_type: str,
    period: int,
    now: datetime,
    *,
    schedules: dict[str, dict] | None = None,
) -> ClassCountdown | None:
    window = get_period_window(day_type, period, today=now.date(), schedules=schedules)
    if window is None:
        return None

    diff_seconds = (window["start"] - now).total_seconds()
    return {
        "seconds": math.floor(diff_seconds),
        "minutes": math.floor(diff_seconds / 60),
        "is_started": now >= window["start"],
        "is_ended": now > window["end"],
    }


def classify_arrival(
    day_type: str,
    period: int,
    now: datetime,
    grace_minutes: int | None = None,
    *,
    schedules: dict[str, dict] | None = None,
) -> ArrivalVerdict:
    grace = GRACE_MINUTES if grace_minutes is None else max(0, int(grace_minutes))
    window = get_period_window(day_type, period, today=now.date(), schedules=schedules)
    if window is None:
        return {
            "status": "no_class",
            "on_time": False,
            "minutes_late": 0,
            "seconds_late": 0,
            "window": None,
        }

    grace_deadline = window["start"] + timedelta(minutes=grace)
    if now <= grace_deadline:
        return {
            "status": "on_time",
            "on_time": True,
            "minutes_late": 0,
            "seconds_late": 0,
            "window": window,
        }

    # Lateness counts from the bell, not from the end of the grace period.
    late_seconds = math.floor((now - window["start"]).total_seconds())
    return {
        "status": "late",
        "on_time": False,
        "minutes_late": late_seconds // 60,
        "seconds_late": late_seconds % 60,
        "window": window,
    }


def _minutes_phrase(minutes: int) -> str:
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def is_pass_blackout(
    day_type: str,
    period: int,
    now: datetime,
    start_blackout_minutes: int | None = None,
    end_blackout_minutes: int | None = None,
    *,
    schedules: dict[str, dict] | None = None,
) -> Blackout:
    start_minutes = BLACKOUT_START_MINUTES if start_blackout_minutes is None else max(0, int(start_blackout_minutes))
    end_minutes = BLACKOUT_END_MINUTES if end_blackout_minutes is None else max(0, int(end_blackout_minutes))

    window = get_period_window(day_type, period, today=now.date(), schedules=schedules)
    if window is None:
        return {"blackout": True, "reason": "unknown period"}

    opens_at = window["start"] + timedelta(minutes=start_minutes)
    closes_at = window["end"] - timedelta(minutes=end_minutes)

    if now < opens_at:
        remaining = math.ceil((opens_at - now).total_seconds() / 60)
        return {"blackout": True, "reason": f"available in {_minutes_phrase(remaining)}"}

    if now >= closes_at:
        return {"blackout": True, "reason": "class ending soon"}

    return {"blackout": False, "reason": None}


def format_countdown(seconds: int | float) -> str:
    total = max(0, math.floor(seconds))
    return f"{total // 60}:{total % 60:02d}"


def serialize_window(window: PeriodWindow | None) -> dict | None:
    if window is None:
        return None
    return {
        "day_type": window["day_type"],
        "period": window["period"],
        "start": window["start"].strftime("%H:%M"),
        "end": window["end"].strftime("%H:%M"),
    }
