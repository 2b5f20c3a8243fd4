import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from backend.errors import PolicyRejectedError, TripConflictError
from backend.services import hallpass
from database import db

T = datetime(2026, 10, 19, 9, 0)
DAY = "2026-10-19"


def test_late_return_is_over_commitment(test_db):
    trip = hallpass.request_trip(1, "bathroom", 15, T)
    assert trip["status"] == "out"
    assert trip["committed_return_at"] == "2026-10-19T09:15:00"

    returned = hallpass.complete_trip(trip["id"], T + timedelta(minutes=20))
    assert returned["status"] == "returned"
    assert returned["actual_return_at"] == "2026-10-19T09:20:00"
    assert returned["duration_minutes"] == 20
    assert returned["over_under_minutes"] == 5


def test_early_return_is_under_commitment(test_db):
    trip = hallpass.request_trip(1, "water", 15, T)
    returned = hallpass.complete_trip(trip["id"], T + timedelta(minutes=10))
    assert returned["duration_minutes"] == 10
    assert returned["over_under_minutes"] == -5


def test_minutes_round_half_up(test_db):
    trip = hallpass.request_trip(1, "water", 5, T)
    returned = hallpass.complete_trip(trip["id"], T + timedelta(minutes=2, seconds=30))
    assert returned["duration_minutes"] == 3
    assert returned["over_under_minutes"] == -2


def test_completing_missing_or_returned_trip_is_a_no_op(test_db):
    assert hallpass.complete_trip(999, T) is None

    trip = hallpass.request_trip(1, "locker", 5, T)
    first = hallpass.complete_trip(trip["id"], T + timedelta(minutes=4))
    assert hallpass.complete_trip(trip["id"], T + timedelta(minutes=9)) is None
    stored = hallpass.get_trips_for_date(DAY)[0]
    assert stored["actual_return_at"] == first["actual_return_at"]


def test_only_one_trip_out_at_a_time(test_db):
    first = hallpass.request_trip(1, "bathroom", 5, T)
    assert hallpass.active_trip(DAY)["id"] == first["id"]

    with pytest.raises(TripConflictError) as exc:
        hallpass.request_trip(2, "bathroom", 5, T + timedelta(minutes=1))
    assert exc.value.active_trip_id == first["id"]
    assert len(hallpass.get_trips_for_date(DAY)) == 1

    hallpass.complete_trip(first["id"], T + timedelta(minutes=5))
    assert hallpass.active_trip(DAY) is None
    second = hallpass.request_trip(2, "bathroom", 5, T + timedelta(minutes=6))
    assert second["status"] == "out"


def test_queue_is_first_in_first_out(test_db):
    out = hallpass.request_trip(1, "bathroom", 5, T)
    later = hallpass.request_trip(3, "water", 5, T + timedelta(minutes=2), queue=True)
    earlier = hallpass.request_trip(2, "office", 10, T + timedelta(minutes=1), queue=True)
    assert later["status"] == earlier["status"] == "queued"

    assert [t["student_id"] for t in hallpass.get_queue(DAY)] == [2, 3]

    assert hallpass.start_next_trip(DAY, T + timedelta(minutes=3)) is None

    hallpass.complete_trip(out["id"], T + timedelta(minutes=4))
    promoted = hallpass.start_next_trip(DAY, T + timedelta(minutes=5))
    assert promoted["student_id"] == 2
    assert promoted["status"] == "out"
    assert promoted["check_out_at"] == "2026-10-19T09:05:00"
    assert promoted["committed_return_at"] == "2026-10-19T09:15:00"
    assert hallpass.active_trip(DAY)["id"] == promoted["id"]
    assert [t["student_id"] for t in hallpass.get_queue(DAY)] == [3]


def test_queue_is_empty_without_waiters(test_db):
    assert hallpass.get_queue(DAY) == []
    assert hallpass.start_next_trip(DAY, T) is None


def test_cooldown_after_return(test_db):
    trip = hallpass.request_trip(4, "bathroom", 5, T)
    hallpass.complete_trip(trip["id"], T)

    waiting = hallpass.get_cooldown(4, DAY, T + timedelta(minutes=19), 20)
    assert waiting == {"on_cooldown": True, "remaining_minutes": 1}

    done = hallpass.get_cooldown(4, DAY, T + timedelta(minutes=20), 20)
    assert done["on_cooldown"] is False


def test_cooldown_uses_most_recent_return(test_db):
    first = hallpass.request_trip(4, "water", 5, T)
    hallpass.complete_trip(first["id"], T + timedelta(minutes=3))
    second = hallpass.request_trip(4, "water", 5, T + timedelta(minutes=30))
    hallpass.complete_trip(second["id"], T + timedelta(minutes=35))

    cooldown = hallpass.get_cooldown(4, DAY, T + timedelta(minutes=40), 20)
    assert cooldown == {"on_cooldown": True, "remaining_minutes": 15}


def test_no_returned_trips_means_no_cooldown(test_db):
    assert hallpass.get_cooldown(8, DAY, T)["on_cooldown"] is False

    hallpass.request_trip(8, "water", 5, T)
    assert hallpass.get_cooldown(8, DAY, T + timedelta(minutes=1))["on_cooldown"] is False


def test_cancel_frees_the_slot_and_skips_cooldown(test_db):
    trip = hallpass.request_trip(5, "office", 10, T)
    cancelled = hallpass.cancel_trip(trip["id"], T + timedelta(minutes=1))

    assert cancelled["status"] == "cancelled"
    assert cancelled["cancelled_at"] == "2026-10-19T09:01:00"
    assert hallpass.active_trip(DAY) is None
    assert hallpass.get_cooldown(5, DAY, T + timedelta(minutes=2))["on_cooldown"] is False
    assert hallpass.complete_trip(trip["id"], T + timedelta(minutes=3)) is None
    assert hallpass.cancel_trip(trip["id"], T + timedelta(minutes=3)) is None


def test_cancel_queued_request(test_db):
    out = hallpass.request_trip(1, "bathroom", 5, T)
    queued = hallpass.request_trip(2, "bathroom", 5, T + timedelta(minutes=1), queue=True)

    hallpass.cancel_trip(queued["id"], T + timedelta(minutes=2))
    assert hallpass.get_queue(DAY) == []
    assert hallpass.active_trip(DAY)["id"] == out["id"]


def test_open_trip_lookup(test_db):
    trip = hallpass.request_trip(6, "locker", 5, T)
    assert hallpass.get_open_trip_for_student(6, DAY)["id"] == trip["id"]
    hallpass.complete_trip(trip["id"], T + timedelta(minutes=5))
    assert hallpass.get_open_trip_for_student(6, DAY) is None


def test_committed_minutes_must_be_positive(test_db):
    with pytest.raises(ValueError):
        hallpass.request_trip(1, "water", 0, T)


def _outcome(call):
    try:
        return call()
    except (TripConflictError, PolicyRejectedError) as e:
        return e


def test_concurrent_requests_leave_exactly_one_trip_out(test_db):
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(
            lambda sid: _outcome(lambda: hallpass.request_trip(sid, "water", 5, T)),
            range(1, 9),
        ))

    out = [r for r in results if isinstance(r, dict)]
    assert len(out) == 1
    assert out[0]["status"] == "out"
    assert all(isinstance(r, TripConflictError) for r in results if r is not out[0])
    assert all(r.active_trip_id == out[0]["id"] for r in results if isinstance(r, TripConflictError))
    assert hallpass.active_trip(DAY)["id"] == out[0]["id"]
    assert len(hallpass.get_trips_for_date(DAY)) == 1


def test_concurrent_queued_requests_keep_one_trip_out(test_db):
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(
            lambda sid: hallpass.request_trip(sid, "water", 5, T + timedelta(seconds=sid), queue=True),
            range(1, 9),
        ))

    assert sorted(r["status"] for r in results) == ["out"] + ["queued"] * 7
    trips = hallpass.get_trips_for_date(DAY)
    assert sum(1 for t in trips if t["status"] == "out") == 1
    assert len(hallpass.get_queue(DAY)) == 7


def test_student_with_an_open_trip_cannot_request_another(test_db):
    hallpass.request_trip(1, "bathroom", 5, T)
    queued = hallpass.request_trip(2, "water", 5, T, queue=True)

    with pytest.raises(PolicyRejectedError) as exc:
        hallpass.request_trip(2, "locker", 5, T + timedelta(minutes=1), queue=True)
    assert exc.value.gate == "open_trip"
    assert [t["id"] for t in hallpass.get_queue(DAY)] == [queued["id"]]


def test_concurrent_requests_from_one_student_open_one_trip(test_db):
    hallpass.request_trip(1, "bathroom", 5, T)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(
            lambda _: _outcome(lambda: hallpass.request_trip(7, "water", 5, T, queue=True)),
            range(6),
        ))

    assert sum(1 for r in results if isinstance(r, dict)) == 1
    refused = [r for r in results if isinstance(r, PolicyRejectedError)]
    assert len(refused) == 5
    assert {r.gate for r in refused} == {"open_trip"}
    assert hallpass.get_open_trip_for_student(7, DAY)["status"] == "queued"


def test_request_during_cooldown_is_refused(test_db):
    trip = hallpass.request_trip(4, "water", 5, T)
    hallpass.complete_trip(trip["id"], T + timedelta(minutes=5))

    with pytest.raises(PolicyRejectedError) as exc:
        hallpass.request_trip(4, "water", 5, T + timedelta(minutes=15), queue=True)
    assert exc.value.gate == "cooldown"
    assert exc.value.reason == "Next pass available in 10 min."

    again = hallpass.request_trip(4, "water", 5, T + timedelta(minutes=15), cooldown_minutes=10)
    assert again["status"] == "out"


def test_schema_allows_one_open_trip_per_student_per_day(test_db):
    hallpass.request_trip(1, "water", 5, T)
    with pytest.raises(sqlite3.IntegrityError):
        db.create(
            "hallpass",
            {
                "student_id": 1,
                "date": DAY,
                "reason": "water",
                "committed_minutes": 5,
                "check_out_at": "2026-10-19T09:01:00",
                "committed_return_at": "2026-10-19T09:06:00",
                "status": "queued",
            },
        )


def test_cooldown_keeps_sub_second_return_time(test_db):
    trip = hallpass.request_trip(4, "water", 5, T)
    returned = hallpass.complete_trip(trip["id"], T + timedelta(milliseconds=600))
    assert returned["actual_return_at"] == "2026-10-19T09:00:00.600000"

    just_after = T + timedelta(minutes=20, milliseconds=300)
    assert hallpass.get_cooldown(4, DAY, just_after, 20) == {"on_cooldown": True, "remaining_minutes": 1}
    assert hallpass.get_cooldown(4, DAY, T + timedelta(minutes=20, milliseconds=600), 20)["on_cooldown"] is False
