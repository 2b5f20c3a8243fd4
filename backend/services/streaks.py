"""
On-time streaks.

The counter rides on a two-state machine:

    normal(n) --on_time--> normal(n+1)
    danger(n) --on_time--> normal(n+1)
    normal(n) --late-----> danger(n)    when n >= PROTECTION_THRESHOLD
    normal(n) --late-----> normal(0)    otherwise
    danger(n) --late-----> normal(0)

so a streak that has reached double digits survives exactly one late arrival.
"""

import sqlite3
from datetime import date
from typing import Literal, NamedTuple, TypedDict

from backend.logging import get_logger
from backend.services.locks import KeyedLock
from database.db import get_by_key, upsert

log = get_logger(__name__)

PROTECTION_THRESHOLD = 10

StreakMode = Literal["normal", "danger"]

_STUDENT_LOCKS = KeyedLock()


class Streak(TypedDict):
    student_id: int
    current_streak: int
    longest_streak: int
    streak_in_danger: bool
    last_on_time_date: str | None


class StreakState(NamedTuple):
    mode: StreakMode
    count: int


def _on_time(state: StreakState) -> StreakState:
    return StreakState("normal", state.count + 1)


def _late(state: StreakState) -> StreakState:
    if state.mode == "normal" and state.count >= PROTECTION_THRESHOLD:
        return StreakState("danger", state.count)
    return StreakState("normal", 0)


def transition(state: StreakState, was_on_time: bool) -> StreakState:
    return _on_time(state) if was_on_time else _late(state)


def state_of(streak: Streak) -> StreakState:
    mode: StreakMode = "danger" if streak["streak_in_danger"] else "normal"
    return StreakState(mode, int(streak["current_streak"]))


def default_streak(student_id: int) -> Streak:
    return {
        "student_id": student_id,
        "current_streak": 0,
        "longest_streak": 0,
        "streak_in_danger": False,
        "last_on_time_date": None,
    }


def get_streak(student_id: int, *, conn: sqlite3.Connection | None = None) -> Streak:
    row = get_by_key("streaks", student_id, conn=conn)
    if not row:
        return default_streak(student_id)
    return {
        "student_id": int(row["student_id"]),
        "current_streak": int(row["current_streak"] or 0),
        "longest_streak": int(row["longest_streak"] or 0),
        "streak_in_danger": bool(row["streak_in_danger"]),
        "last_on_time_date": row["last_on_time_date"],
    }


def apply_arrival(streak: Streak, was_on_time: bool, today: date) -> Streak:
    """Pure update of a streak record for one arrival."""
    nxt = transition(state_of(streak), was_on_time)
    updated: Streak = {
        **streak,
        "current_streak": nxt.count,
        "longest_streak": max(int(streak["longest_streak"]), nxt.count),
        "streak_in_danger": nxt.mode == "danger",
    }
    if was_on_time:
        updated["last_on_time_date"] = today.isoformat()
    return updated


def update_streak(
    student_id: int,
    was_on_time: bool,
    *,
    today: date | None = None,
    conn: sqlite3.Connection | None = None,
) -> Streak:
    """Read-modify-write of one student's streak, serialised per student."""
    with _STUDENT_LOCKS.hold(student_id):
        before = get_streak(student_id, conn=conn)
        after = apply_arrival(before, was_on_time, today or date.today())
        upsert("streaks", dict(after), conn=conn)

    if after["streak_in_danger"] and not before["streak_in_danger"]:
        log.info("streak_in_danger", student_id=student_id, current_streak=after["current_streak"])
    elif before["current_streak"] > 0 and after["current_streak"] == 0:
        log.info("streak_reset", student_id=student_id, previous_streak=before["current_streak"])
    else:
        log.debug("streak_updated", student_id=student_id, current_streak=after["current_streak"])
    return after
