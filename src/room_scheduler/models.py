from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


LIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class EventKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    # emitted only by adapters that hard-delete; the scheduler itself never does
    DELETED = "deleted"


class Interval(BaseModel):
    """Half-open time range ``[start, end)``."""

    model_config = ConfigDict(frozen=True)

    start: AwareDatetime
    end: AwareDatetime

    @model_validator(mode="after")
    def _end_after_start(self) -> Interval:
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def overlaps(self, other: Interval) -> bool:
        # touching bounds (self.end == other.start) are not an overlap
        return self.start < other.end and other.start < self.end

    def covers(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


class Room(BaseModel):
    model_config = ConfigDict(frozen=True)

    room_id: int
    name: str = ""
    number: int = 0
    capacity: int = Field(..., ge=0)
    location: str = ""
    is_active: bool = True


class Booking(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_id: str
    room_id: int
    requested_by: str
    interval: Interval
    status: BookingStatus
    attendees: int = Field(default=1, ge=1)
    created_at: AwareDatetime
    cancelled_at: AwareDatetime | None = None
    # copied from the room when the booking was made
    capacity_snapshot: int
    location_snapshot: str

    @model_validator(mode="after")
    def _cancelled_at_matches_status(self) -> Booking:
        if (self.status == BookingStatus.CANCELLED) != (self.cancelled_at is not None):
            raise ValueError("cancelled_at must be set exactly when status is cancelled")
        return self

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


class BookingDraft(BaseModel):
    """A booking that has not been stored yet and so has no id."""

    model_config = ConfigDict(frozen=True)

    room_id: int
    requested_by: str
    interval: Interval
    status: BookingStatus
    attendees: int = Field(default=1, ge=1)
    created_at: AwareDatetime
    capacity_snapshot: int
    location_snapshot: str

    def with_id(self, booking_id: str) -> Booking:
        return Booking(booking_id=booking_id, **self.model_dump())


class BookingRequest(BaseModel):
    room_id: int
    requested_by: str = Field(..., min_length=1)
    start: AwareDatetime
    end: AwareDatetime
    attendees: int = 1


class ReschedulePatch(BaseModel):
    """Only the bounds being moved; the rest comes from the stored interval."""

    start: AwareDatetime | None = None
    end: AwareDatetime | None = None

    def apply_to(self, current: Interval) -> tuple[datetime, datetime]:
        return (self.start or current.start, self.end or current.end)


class BookingEvent(BaseModel):
    event_id: str
    kind: EventKind
    booking: Booking
    acting_identity: str
    occurred_at: AwareDatetime
