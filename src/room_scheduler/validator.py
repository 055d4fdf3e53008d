from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, tzinfo
from zoneinfo import ZoneInfo

from aws_lambda_powertools import Logger

from . import config
from .errors import ValidationError
from .models import Room
from .rooms import RoomDirectory

logger = Logger()


@dataclass(frozen=True)
class FieldNames:
    """Field labels reported back to the caller, per call site."""

    room: str
    start: str
    end: str
    capacity: str = "Capacity"


CREATE_FIELDS = FieldNames(room="RoomId", start="StartDate", end="EndDate")
RESCHEDULE_FIELDS = FieldNames(room="RoomId", start="StartTime", end="EndTime")


@dataclass(frozen=True)
class Candidate:
    room_id: int
    start: datetime
    end: datetime
    attendees: int
    fields: FieldNames = CREATE_FIELDS


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    field_name: str | None = None
    message: str | None = None
    room: Room | None = None

    def to_error(self) -> ValidationError:
        if self.ok:
            raise ValueError("successful validation has no error")
        return ValidationError(field_name=self.field_name or "", message=self.message or "")


def _fail(field_name: str, message: str) -> ValidationResult:
    return ValidationResult(ok=False, field_name=field_name, message=message)


class BookingValidator:
    """Business rules for a booking candidate, checked in a fixed order.

    The first failing rule decides the reported field:

    1. room exists and is active
    2. end is after start
    3. start and end sit inside business hours
    4. start and end are on the same day
    5. attendees fit the room
    """

    def __init__(
        self,
        rooms: RoomDirectory,
        opens_at: int = config.BUSINESS_HOURS_START,
        closes_at: int = config.BUSINESS_HOURS_END,
        timezone: str | None = config.BUSINESS_TIMEZONE,
    ) -> None:
        if not 0 <= opens_at < closes_at <= 24:  # noqa: PLR2004
            raise ValueError(f"invalid business hours {opens_at}-{closes_at}")
        self._rooms = rooms
        self._opens = time(opens_at)
        self._closes_hour = closes_at
        self._tz: tzinfo | None = ZoneInfo(timezone) if timezone else None

    def validate(self, candidate: Candidate) -> ValidationResult:
        fields = candidate.fields

        room = self._rooms.get_room(candidate.room_id)
        if room is None:
            return _fail(fields.room, f"Room {candidate.room_id} does not exist.")
        if not room.is_active:
            return _fail(fields.room, "This room is not currently available for booking.")

        if candidate.end <= candidate.start:
            return _fail(fields.end, "End time must be after start time.")

        start = self._local(candidate.start)
        end = self._local(candidate.end)
        if not self._opens_before(start) or self._at_or_after_close(start):
            return _fail(
                fields.start,
                f"Booking start time must be between {self._window()}. Provided start time: {start:%H:%M}",
            )
        if not self._opens_before(end) or self._after_close(end):
            return _fail(
                fields.end,
                f"Booking end time must be between {self._window()}. Provided end time: {end:%H:%M}",
            )

        if start.date() != end.date():
            return _fail(fields.start, "Bookings must start and end on the same day.")

        if candidate.attendees < 1:
            return _fail(fields.capacity, "Booking capacity must be at least 1 person.")
        if candidate.attendees > room.capacity:
            return _fail(
                fields.capacity,
                f"Requested capacity ({candidate.attendees}) exceeds room capacity ({room.capacity}).",
            )

        return ValidationResult(ok=True, room=room)

    def _local(self, value: datetime) -> datetime:
        return value.astimezone(self._tz) if self._tz is not None else value

    def _window(self) -> str:
        return f"{self._opens:%H:%M} and {self._closes_hour:02d}:00"

    def _opens_before(self, value: datetime) -> bool:
        return value.time() >= self._opens

    def _at_or_after_close(self, value: datetime) -> bool:
        return value.hour >= self._closes_hour

    def _after_close(self, value: datetime) -> bool:
        # closing time itself is a legal end
        if value.hour > self._closes_hour:
            return True
        return value.hour == self._closes_hour and (value.minute, value.second, value.microsecond) != (0, 0, 0)
