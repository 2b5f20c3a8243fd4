"""
Hall-pass trip ledger.

Trip lifecycle::

    queued --> out --> returned
       \\        \\
        +--------+--> cancelled

returned and cancelled are terminal. The one trip that is "out" on a given
date is held in the ``hallpass_active`` slot table; claiming and freeing the
slot happens under a per-date lock in the same transaction as the trip write.
The per-student gates (one open trip, cooldown) are checked inside the same
critical section as the slot claim. The room-wide gates (lock flag, blackout)
are applied by the caller.
"""

import math
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Literal, TypedDict

from backend.config import COOLDOWN_MINUTES
from backend.errors import PolicyRejectedError, TripConflictError
from backend.logging import get_logger
from backend.services.locks import KeyedLock
from database.db import (
    connect_db,
    create,
    create_if_absent,
    delete_by_key,
    get_all_by_index,
    get_by_key,
    upsert,
)

log = get_logger(__name__)

TripStatus = Literal["queued", "out", "returned", "cancelled"]
OPEN_STATUSES: frozenset[str] = frozenset({"queued", "out"})

_DATE_LOCKS = KeyedLock()

_OPEN_TRIP_REASON = "Student already has a pass out or waiting."


class Cooldown(TypedDict):
    on_cooldown: bool
    remaining_minutes: int


def _stamp(value: datetime) -> str:
    return value.isoformat()


def _parse_stamp(value: str) -> datetime:
    return datetime.fromisoformat(str(value))


def _day(value: date | str) -> str:
    return value if isinstance(value, str) else value.isoformat()


def _round_minutes(seconds: float) -> int:
    # Half-up, so -4.5 rounds to -4 and 4.5 to 5.
    return math.floor(seconds / 60 + 0.5)


class _Tx:
    """Use the caller's connection, or own one and commit on success."""

    def __init__(self, conn: sqlite3.Connection | None):
        self.owns_conn = conn is None
        self.conn = conn or connect_db()

    def __enter__(self) -> sqlite3.Connection:
        return self.conn

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.owns_conn:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
            self.conn.close()


def _release_slot(conn: sqlite3.Connection, trip: dict[str, Any]) -> None:
    slot = get_by_key("hallpass_active", trip["date"], conn=conn)
    if slot and int(slot["trip_id"]) == int(trip["id"]):
        delete_by_key("hallpass_active", trip["date"], conn=conn)


def _insert_trip(conn: sqlite3.Connection, trip: dict[str, Any]) -> int:
    try:
        return create("hallpass", trip, conn=conn)
    except sqlite3.IntegrityError:
        # idx_hallpass_open_trip: another writer opened a trip for this student.
        raise PolicyRejectedError("open_trip", _OPEN_TRIP_REASON)


def _check_student_gates(
    conn: sqlite3.Connection,
    student_id: int,
    day: str,
    now: datetime,
    cooldown_minutes: int | None,
) -> None:
    if get_open_trip_for_student(student_id, day, conn=conn):
        raise PolicyRejectedError("open_trip", _OPEN_TRIP_REASON)
    cooldown = get_cooldown(student_id, day, now, cooldown_minutes, conn=conn)
    if cooldown["on_cooldown"]:
        raise PolicyRejectedError("cooldown", f"Next pass available in {cooldown['remaining_minutes']} min.")


def request_trip(
    student_id: int,
    reason: str,
    committed_minutes: int,
    now: datetime,
    *,
    queue: bool = False,
    cooldown_minutes: int | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict[str, Any]:
    """
    Check a student out, or queue them when someone else is already out.

    Raises PolicyRejectedError when the student already has an open trip or is
    still cooling down from their last return, and TripConflictError when the
    slot is taken and ``queue`` is False.
    """
    if int(committed_minutes) <= 0:
        raise ValueError("committed_minutes must be positive")

    day = now.date().isoformat()
    trip: dict[str, Any] = {
        "student_id": student_id,
        "date": day,
        "reason": reason,
        "committed_minutes": int(committed_minutes),
        "check_out_at": _stamp(now),
        "committed_return_at": _stamp(now + timedelta(minutes=int(committed_minutes))),
        "actual_return_at": None,
        "status": "out",
        "duration_minutes": None,
        "over_under_minutes": None,
        "cancelled_at": None,
    }

    with _DATE_LOCKS.hold(day), _Tx(conn) as tx:
        _check_student_gates(tx, student_id, day, now, cooldown_minutes)

        slot = get_by_key("hallpass_active", day, conn=tx)
        if slot is None:
            trip["id"] = _insert_trip(tx, trip)
            _, claimed = create_if_absent(
                "hallpass_active", {"date": day, "trip_id": trip["id"]}, "date", conn=tx
            )
            if claimed:
                log.info("trip_checked_out", trip_id=trip["id"], student_id=student_id, reason=reason)
                return trip
            slot = get_by_key("hallpass_active", day, conn=tx)
            if not queue:
                raise TripConflictError(int(slot["trip_id"]) if slot else None)
            trip["status"] = "queued"
            upsert("hallpass", trip, conn=tx)
        else:
            if not queue:
                raise TripConflictError(int(slot["trip_id"]))
            trip["status"] = "queued"
            trip["id"] = _insert_trip(tx, trip)

    log.info("trip_queued", trip_id=trip["id"], student_id=student_id, reason=reason)
    return trip


def complete_trip(
    trip_id: int,
    now: datetime,
    *,
    conn: sqlite3.Connection | None = None,
) -> dict[str, Any] | None:
    """Mark an out trip as returned. Absent or non-out trips are a no-op (None)."""
    trip = get_by_key("hallpass", trip_id, conn=conn)
    if not trip:
        return None

    with _DATE_LOCKS.hold(trip["date"]), _Tx(conn) as tx:
        trip = get_by_key("hallpass", trip_id, conn=tx)
        if not trip or trip["status"] != "out":
            return None

        check_out = _parse_stamp(trip["check_out_at"])
        committed = _parse_stamp(trip["committed_return_at"])
        trip["actual_return_at"] = _stamp(now)
        trip["status"] = "returned"
        trip["duration_minutes"] = _round_minutes((now - check_out).total_seconds())
        trip["over_under_minutes"] = _round_minutes((now - committed).total_seconds())
        upsert("hallpass", trip, conn=tx)
        _release_slot(tx, trip)

    log.info(
        "trip_returned",
        trip_id=trip_id,
        student_id=trip["student_id"],
        duration_minutes=trip["duration_minutes"],
        over_under_minutes=trip["over_under_minutes"],
    )
    return trip


def cancel_trip(
    trip_id: int,
    now: datetime,
    *,
    conn: sqlite3.Connection | None = None,
) -> dict[str, Any] | None:
    """Withdraw a queued request or abandon an out trip. The row is kept."""
    trip = get_by_key("hallpass", trip_id, conn=conn)
    if not trip:
        return None

    with _DATE_LOCKS.hold(trip["date"]), _Tx(conn) as tx:
        trip = get_by_key("hallpass", trip_id, conn=tx)
        if not trip or trip["status"] not in OPEN_STATUSES:
            return None

        previous = trip["status"]
        trip["status"] = "cancelled"
        trip["cancelled_at"] = _stamp(now)
        upsert("hallpass", trip, conn=tx)
        if previous == "out":
            _release_slot(tx, trip)

    log.info("trip_cancelled", trip_id=trip_id, student_id=trip["student_id"], previous_status=previous)
    return trip


def start_next_trip(
    day: date | str,
    now: datetime,
    *,
    conn: sqlite3.Connection | None = None,
) -> dict[str, Any] | None:
    """
    Send the head of the queue out, if the slot is free.

    Check-out and committed return are re-based on ``now``; the queued
    timestamp only served to order the wait list.
    """
    day_str = _day(day)
    with _DATE_LOCKS.hold(day_str), _Tx(conn) as tx:
        if get_by_key("hallpass_active", day_str, conn=tx):
            return None
        waiting = get_queue(day_str, conn=tx)
        if not waiting:
            return None

        trip = waiting[0]
        trip["status"] = "out"
        trip["check_out_at"] = _stamp(now)
        trip["committed_return_at"] = _stamp(now + timedelta(minutes=int(trip["committed_minutes"])))
        upsert("hallpass", trip, conn=tx)
        create_if_absent("hallpass_active", {"date": day_str, "trip_id": trip["id"]}, "date", conn=tx)

    log.info("trip_started_from_queue", trip_id=trip["id"], student_id=trip["student_id"])
    return trip


def active_trip(day: date | str, *, conn: sqlite3.Connection | None = None) -> dict[str, Any] | None:
    slot = get_by_key("hallpass_active", _day(day), conn=conn)
    if not slot:
        return None
    return get_by_key("hallpass", int(slot["trip_id"]), conn=conn)


def get_queue(day: date | str, *, conn: sqlite3.Connection | None = None) -> list[dict[str, Any]]:
    waiting = get_all_by_index("hallpass", "dateStatus", (_day(day), "queued"), conn=conn)
    return sorted(waiting, key=lambda t: (_parse_stamp(t["check_out_at"]), int(t["id"])))


def get_trips_for_date(day: date | str, *, conn: sqlite3.Connection | None = None) -> list[dict[str, Any]]:
    return get_all_by_index("hallpass", "date", _day(day), conn=conn)


def get_open_trip_for_student(
    student_id: int,
    day: date | str,
    *,
    conn: sqlite3.Connection | None = None,
) -> dict[str, Any] | None:
    trips = get_all_by_index("hallpass", "studentDate", (student_id, _day(day)), conn=conn)
    return next((t for t in trips if t["status"] in OPEN_STATUSES), None)


def get_cooldown(
    student_id: int,
    day: date | str,
    now: datetime,
    cooldown_minutes: int | None = None,
    *,
    conn: sqlite3.Connection | None = None,
) -> Cooldown:
    minutes = COOLDOWN_MINUTES if cooldown_minutes is None else max(0, int(cooldown_minutes))
    trips = get_all_by_index("hallpass", "studentDate", (student_id, _day(day)), conn=conn)
    returns = [
        _parse_stamp(t["actual_return_at"])
        for t in trips
        if t["status"] == "returned" and t["actual_return_at"]
    ]
    if not returns:
        return {"on_cooldown": False, "remaining_minutes": 0}

    cooldown_end = max(returns) + timedelta(minutes=minutes)
    if now < cooldown_end:
        return {
            "on_cooldown": True,
            "remaining_minutes": math.ceil((cooldown_end - now).total_seconds() / 60),
        }
    return {"on_cooldown": False, "remaining_minutes": 0}
