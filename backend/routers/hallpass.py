from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend import config
from backend.errors import PolicyRejectedError, TripConflictError
from backend.logging import get_logger
from backend.routers.students import require_active_student
from backend.security import require_classroom
from backend.services import schedule as bell
from backend.services.hallpass import (
    active_trip,
    cancel_trip,
    complete_trip,
    get_cooldown,
    get_queue,
    get_trips_for_date,
    request_trip,
    start_next_trip,
)
from backend.services.settings import get_effective_settings, schedules_for

router = APIRouter()
log = get_logger(__name__)


class PassRequest(BaseModel):
    student_id: int
    reason: str = "other"
    committed_minutes: int | None = None
    queue: bool = False


def _check_room_gates(now: datetime, settings: dict) -> None:
    """Raise PolicyRejectedError when passes are locked or in a blackout window."""
    if settings["hall_pass_locked"]:
        raise PolicyRejectedError("locked", "Hall passes are locked.")

    blackout = bell.is_pass_blackout(
        settings["day_type"],
        settings["current_period"],
        now,
        settings["blackout_start_minutes"],
        settings["blackout_end_minutes"],
        schedules=schedules_for(settings),
    )
    if blackout["blackout"]:
        raise PolicyRejectedError("blackout", blackout["reason"] or "Hall passes unavailable.")


@router.post("/hallpass/request")
def request_pass(payload: PassRequest):
    reason = payload.reason.strip().lower()
    if reason not in config.PASS_REASONS:
        raise HTTPException(status_code=400, detail="Unknown pass reason.")

    minutes = payload.committed_minutes
    if minutes is None:
        minutes = config.DEFAULT_COMMITTED_MINUTES
    if minutes < 1 or minutes > config.MAX_COMMITTED_MINUTES:
        raise HTTPException(
            status_code=400,
            detail=f"Committed minutes must be between 1 and {config.MAX_COMMITTED_MINUTES}.",
        )
    require_active_student(payload.student_id)

    now = bell.local_now()
    settings = get_effective_settings(now.date())
    try:
        # Lock and blackout first; open-trip and cooldown are checked by the ledger
        # under the same lock that claims the slot.
        _check_room_gates(now, settings)
        trip = request_trip(payload.student_id, reason, minutes, now, queue=payload.queue)
    except PolicyRejectedError as e:
        log.info("pass_request_rejected", student_id=payload.student_id, gate=e.gate)
        raise HTTPException(status_code=423, detail={"gate": e.gate, "reason": e.reason})
    except TripConflictError as e:
        raise HTTPException(
            status_code=409,
            detail={"gate": "active_trip", "reason": str(e), "active_trip_id": e.active_trip_id},
        )

    return {"trip": trip, "queued": trip["status"] == "queued"}


@router.post("/hallpass/{trip_id}/return")
def return_pass(trip_id: int):
    trip = complete_trip(trip_id, bell.local_now())
    if trip is None:
        raise HTTPException(status_code=404, detail="No outstanding trip with that ID.")
    return trip


@router.post("/hallpass/{trip_id}/cancel")
def cancel_pass(trip_id: int, _session: dict = Depends(require_classroom)):
    trip = cancel_trip(trip_id, bell.local_now())
    if trip is None:
        raise HTTPException(status_code=404, detail="No open trip with that ID.")
    return trip


@router.post("/hallpass/next")
def next_pass():
    now = bell.local_now()
    settings = get_effective_settings(now.date())
    try:
        _check_room_gates(now, settings)
    except PolicyRejectedError as e:
        waiting = get_queue(now.date())
        log.info(
            "queue_promotion_held",
            gate=e.gate,
            student_id=waiting[0]["student_id"] if waiting else None,
        )
        raise HTTPException(status_code=423, detail={"gate": e.gate, "reason": e.reason})

    trip = start_next_trip(now.date(), now)
    return {"started": trip is not None, "trip": trip}


@router.get("/hallpass/active")
def current_pass():
    return {"trip": active_trip(bell.local_now().date())}


@router.get("/hallpass/queue")
def pass_queue():
    return get_queue(bell.local_now().date())


@router.get("/hallpass")
def passes_for_date(date: str | None = None, _session: dict = Depends(require_classroom)):
    return get_trips_for_date(date or bell.local_now().date().isoformat())


@router.get("/students/{student_id}/cooldown")
def student_cooldown(student_id: int):
    now = bell.local_now()
    return get_cooldown(student_id, now.date(), now)
