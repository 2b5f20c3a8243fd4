"""Error hierarchy for hall-pass lifecycle failures.

Routers translate these into HTTP responses: conflicts become 409,
policy rejections become 423 with the gate's reason as detail.
"""


class HallPassError(Exception):
    """Base exception for all hall-pass errors."""

    pass


class TripConflictError(HallPassError):
    """Another trip already holds the active slot for the date."""

    def __init__(self, active_trip_id: int | None = None):
        self.active_trip_id = active_trip_id
        super().__init__("Another student is already out on a hall pass.")


class PolicyRejectedError(HallPassError):
    """A pass request was refused by a policy gate (lock, blackout, cooldown).

    The gate name is kept on the exception so clients can show the right prompt.
    """

    def __init__(self, gate: str, reason: str):
        self.gate = gate
        self.reason = reason
        super().__init__(reason)
