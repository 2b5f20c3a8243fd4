import csv
import io
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, TypedDict

from backend.config import GRACE_MINUTES
from backend.logging import get_logger
from backend.services.locks import KeyedLock
from backend.services.schedule import ArrivalVerdict, classify_arrival
from backend.services.streaks import Streak, get_streak, update_streak
from backend.services.students import display_name
from database.db import create_if_absent, get_all, get_all_by_index

log = get_logger(__name__)

# Held per student around lookup + insert + streak update, which also keeps
# one student's streak updates in check-in order across periods.
_CHECK_IN_LOCKS = KeyedLock()


class CheckInResult(TypedDict):
    record: dict[str, Any]
    created: bool
    verdict: ArrivalVerdict
    streak: Streak


def _build_record(
    student_id: int,
    period: int,
    now: datetime,
    day_type: str,
    verdict: ArrivalVerdict,
    grace_minutes: int | None,
    source: str,
) -> dict[str, Any]:
    window = verdict["window"]
    return {
        "student_id": student_id,
        "date": now.date().isoformat(),
        "period": period,
        "check_in_at": now.isoformat(timespec="seconds"),
        "is_late": verdict["status"] == "late",
        "minutes_late": verdict["minutes_late"],
        "seconds_late": verdict["seconds_late"],
        "verdict": verdict["status"],
        "source": source,
        "day_type": day_type,
        "scheduled_start": window["start"].strftime("%H:%M") if window else None,
        "scheduled_end": window["end"].strftime("%H:%M") if window else None,
        "grace_minutes": grace_minutes,
    }


def check_in(
    student_id: int,
    period: int,
    now: datetime,
    day_type: str,
    *,
    grace_minutes: int | None = None,
    source: str = "self",
    schedules: dict[str, dict] | None = None,
    conn: sqlite3.Connection | None = None,
) -> CheckInResult:
    """
    Record a student's arrival for a period, at most once per day.

    A repeat check-in for the same (student, date, period) returns the stored
    record untouched and leaves the streak alone. Check-ins for a period that
    has no scheduled window are stored with verdict "no_class" and never move
    the streak.
    """
    grace = GRACE_MINUTES if grace_minutes is None else max(0, int(grace_minutes))
    verdict = classify_arrival(day_type, period, now, grace, schedules=schedules)
    key = (student_id, now.date().isoformat(), period)

    with _CHECK_IN_LOCKS.hold(student_id):
        existing = get_all_by_index("attendance", "studentDatePeriod", key, conn=conn)
        if existing:
            log.debug("check_in_duplicate", student_id=student_id, period=period, record_id=existing[0]["id"])
            return {
                "record": existing[0],
                "created": False,
                "verdict": verdict,
                "streak": get_streak(student_id, conn=conn),
            }

        entity = _build_record(student_id, period, now, day_type, verdict, grace, source)
        record, created = create_if_absent("attendance", entity, "studentDatePeriod", conn=conn)
        if not created:
            return {
                "record": record,
                "created": False,
                "verdict": verdict,
                "streak": get_streak(student_id, conn=conn),
            }

        if verdict["status"] == "no_class":
            log.warning("check_in_no_scheduled_class", student_id=student_id, period=period, day_type=day_type)
            streak = get_streak(student_id, conn=conn)
        else:
            streak = update_streak(student_id, verdict["on_time"], today=now.date(), conn=conn)

    log.info(
        "check_in_recorded",
        student_id=student_id,
        period=period,
        verdict=verdict["status"],
        minutes_late=verdict["minutes_late"],
        current_streak=streak["current_streak"],
    )
    return {"record": record, "created": True, "verdict": verdict, "streak": streak}


def get_attendance_for_date(day: date | str, *, conn: sqlite3.Connection | None = None) -> list[dict[str, Any]]:
    day_str = day if isinstance(day, str) else day.isoformat()
    return get_all_by_index("attendance", "date", day_str, conn=conn)


def get_student_attendance(
    student_id: int,
    start_date: date | str,
    end_date: date | str,
    *,
    conn: sqlite3.Connection | None = None,
) -> list[dict[str, Any]]:
    start_str = start_date if isinstance(start_date, str) else start_date.isoformat()
    end_str = end_date if isinstance(end_date, str) else end_date.isoformat()
    rows = get_all_by_index("attendance", "student", student_id, conn=conn)
    return [r for r in rows if start_str <= str(r["date"]) <= end_str]


def get_student_attendance_history(
    student_id: int,
    days: int = 30,
    *,
    today: date | None = None,
    conn: sqlite3.Connection | None = None,
) -> list[dict[str, Any]]:
    end = today or date.today()
    start = end - timedelta(days=days)
    return get_student_attendance(student_id, start, end, conn=conn)


def get_attendance_stats(
    days: int = 30,
    *,
    today: date | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict[str, int]:
    start_str = ((today or date.today()) - timedelta(days=days)).isoformat()
    recent = [
        r for r in get_all("attendance", conn=conn)
        if str(r["date"]) >= start_str and r["verdict"] != "no_class"
    ]

    total = len(recent)
    late = sum(1 for r in recent if r["is_late"])
    on_time = total - late
    return {
        "total_checkins": total,
        "on_time_checkins": on_time,
        "late_checkins": late,
        "on_time_rate": int(on_time * 100 / total + 0.5) if total > 0 else 0,
    }


EXPORT_HEADER = ("Student Name", "Date", "Period", "Status", "Check-in Time", "Minutes Late")
_STATUS_LABELS = {"on_time": "On Time", "late": "Late", "no_class": "No Class"}


def export_attendance_csv(
    days: int = 30,
    *,
    today: date | None = None,
    conn: sqlite3.Connection | None = None,
) -> str:
    """Attendance for the last ``days`` days as CSV, grouped by student in roster order."""
    end = today or date.today()
    start_str = (end - timedelta(days=days)).isoformat()
    end_str = end.isoformat()

    roster = {int(s["id"]): s for s in get_all("students", conn=conn)}

    def sort_key(record: dict[str, Any]) -> tuple:
        student = roster.get(int(record["student_id"]))
        name = (student["last_initial"], student["first_name"]) if student else ("", "")
        return (student is None, *name, int(record["student_id"]), str(record["date"]), int(record["period"]))

    rows = sorted(
        (r for r in get_all("attendance", conn=conn) if start_str <= str(r["date"]) <= end_str),
        key=sort_key,
    )

    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(EXPORT_HEADER)
    for r in rows:
        writer.writerow([
            display_name(roster.get(int(r["student_id"]))),
            r["date"],
            r["period"],
            _STATUS_LABELS.get(r["verdict"], r["verdict"]),
            datetime.fromisoformat(r["check_in_at"]).strftime("%H:%M:%S"),
            r["minutes_late"] if r["is_late"] else 0,
        ])
    return out.getvalue()
