from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from .models import Booking, BookingStatus, Interval


# Business outcomes. These are returned, never raised.


class ValidationError(BaseModel):
    kind: Literal["validation"] = "validation"
    field_name: str
    message: str


class ConflictError(BaseModel):
    kind: Literal["conflict"] = "conflict"
    room_id: int
    interval: Interval
    message: str = "Room is not available during the requested time."


class InvalidStateTransition(BaseModel):
    kind: Literal["invalid_transition"] = "invalid_transition"
    from_status: BookingStatus
    to_status: BookingStatus

    @property
    def message(self) -> str:
        return f"Cannot move booking from {self.from_status} to {self.to_status}."


class NotFoundError(BaseModel):
    kind: Literal["not_found"] = "not_found"
    booking_id: str

    @property
    def message(self) -> str:
        return f"Booking {self.booking_id} not found."


CreateOutcome = Booking | ValidationError | ConflictError
StatusOutcome = Booking | NotFoundError | InvalidStateTransition
RescheduleOutcome = Booking | ValidationError | ConflictError | NotFoundError


# Infrastructure failures. These are raised.


class PersistenceError(Exception):
    """Storage gateway failure; safe to retry the whole unit of work."""


class LockTimeoutError(PersistenceError):
    def __init__(self, room_id: int, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout}s waiting for room {room_id}")
        self.room_id = room_id
        self.timeout = timeout


class RaceLostError(PersistenceError):
    """A concurrent writer committed first on the same room.

    An overlap is reported to the caller as a conflict. Contention alone is
    retried against fresh state like any other storage failure.
    """

    def __init__(self, room_id: int, detail: str) -> None:
        super().__init__(f"Room {room_id}: {detail}")
        self.room_id = room_id


class OverlapViolationError(RaceLostError):
    def __init__(self, room_id: int) -> None:
        super().__init__(room_id, "live bookings would overlap")


class RoomContentionError(RaceLostError):
    def __init__(self, room_id: int) -> None:
        super().__init__(room_id, "room guard changed since the unit of work began")
