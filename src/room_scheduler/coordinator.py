"""
Scheduling coordinator.

Each mutation validates, checks for conflicts and writes inside one unit of
work scoped to the booking's room, then announces the result once the write
has committed. Business rejections come back as values; only storage
failures are raised.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TypeVar

from aws_lambda_powertools import Logger

from . import config, state_machine
from .broadcaster import ChangeBroadcaster
from .conflicts import has_conflict
from .errors import (
    ConflictError,
    CreateOutcome,
    NotFoundError,
    PersistenceError,
    OverlapViolationError,
    RescheduleOutcome,
    StatusOutcome,
    ValidationError,
)
from .gateway import StorageGateway
from .models import Booking, BookingDraft, BookingRequest, BookingStatus, EventKind, Interval, ReschedulePatch
from .validator import CREATE_FIELDS, RESCHEDULE_FIELDS, BookingValidator, Candidate

logger = Logger()

T = TypeVar("T")


class SchedulingCoordinator:
    def __init__(
        self,
        gateway: StorageGateway,
        validator: BookingValidator,
        broadcaster: ChangeBroadcaster | None = None,
        auto_confirm: bool = config.BOOKING_AUTO_CONFIRM,
        max_attempts: int = config.PERSISTENCE_MAX_ATTEMPTS,
        retry_delay: float = config.PERSISTENCE_RETRY_DELAY_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._gateway = gateway
        self._validator = validator
        self._broadcaster = broadcaster
        self._initial_status = BookingStatus.CONFIRMED if auto_confirm else BookingStatus.PENDING
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._clock = clock

    # -- reads ---------------------------------------------------------------

    def get(self, booking_id: str) -> Booking | NotFoundError:
        booking = self._with_retries("get", lambda: self._gateway.get(booking_id))
        return booking if booking is not None else NotFoundError(booking_id=booking_id)

    def list_for_room(self, room_id: int) -> list[Booking]:
        bookings = self._with_retries("list_for_room", lambda: self._gateway.list_for_room(room_id))
        return sorted(bookings, key=lambda b: b.interval.start)

    # -- mutations -----------------------------------------------------------

    def create(self, request: BookingRequest, acting_identity: str) -> CreateOutcome:
        outcome = self._with_retries("create", lambda: self._create_once(request))
        if isinstance(outcome, Booking):
            logger.info(
                "Booking created",
                extra={"booking_id": outcome.booking_id, "room_id": outcome.room_id, "status": outcome.status},
            )
            self._publish(EventKind.CREATED, outcome, acting_identity)
        return outcome

    def change_status(self, booking_id: str, target: BookingStatus, acting_identity: str) -> StatusOutcome:
        current = self._with_retries("get", lambda: self._gateway.get(booking_id))
        if current is None:
            return NotFoundError(booking_id=booking_id)

        outcome = self._with_retries("change_status", lambda: self._change_status_once(current.room_id, booking_id, target))
        if isinstance(outcome, Booking):
            logger.info("Booking status changed", extra={"booking_id": booking_id, "status": outcome.status})
            kind = EventKind.CANCELLED if outcome.status == BookingStatus.CANCELLED else EventKind.UPDATED
            self._publish(kind, outcome, acting_identity)
        return outcome

    def confirm(self, booking_id: str, acting_identity: str) -> StatusOutcome:
        return self.change_status(booking_id, BookingStatus.CONFIRMED, acting_identity)

    def cancel(self, booking_id: str, acting_identity: str) -> StatusOutcome:
        return self.change_status(booking_id, BookingStatus.CANCELLED, acting_identity)

    def reschedule(self, booking_id: str, patch: ReschedulePatch, acting_identity: str) -> RescheduleOutcome:
        current = self._with_retries("get", lambda: self._gateway.get(booking_id))
        if current is None:
            return NotFoundError(booking_id=booking_id)

        outcome = self._with_retries("reschedule", lambda: self._reschedule_once(current.room_id, booking_id, patch))
        if isinstance(outcome, Booking):
            logger.info(
                "Booking rescheduled",
                extra={"booking_id": booking_id, "start": outcome.interval.start, "end": outcome.interval.end},
            )
            self._publish(EventKind.UPDATED, outcome, acting_identity)
        return outcome

    # -- single attempts -------------------------------------------------------

    def _create_once(self, request: BookingRequest) -> CreateOutcome:
        with self._gateway.begin_unit_of_work(request.room_id) as uow:
            result = self._validator.validate(
                Candidate(request.room_id, request.start, request.end, request.attendees, CREATE_FIELDS)
            )
            if not result.ok or result.room is None:
                return _rejected(result.to_error(), room_id=request.room_id)

            interval = Interval(start=request.start, end=request.end)
            if has_conflict(uow, request.room_id, interval):
                return _conflict(request.room_id, interval)

            draft = BookingDraft(
                room_id=request.room_id,
                requested_by=request.requested_by,
                interval=interval,
                status=self._initial_status,
                attendees=request.attendees,
                created_at=self._clock(),
                capacity_snapshot=result.room.capacity,
                location_snapshot=result.room.location,
            )
            booking = uow.insert(draft)
            try:
                uow.commit()
            except OverlapViolationError:
                return _conflict(request.room_id, interval)
            return booking

    def _change_status_once(self, room_id: int, booking_id: str, target: BookingStatus) -> StatusOutcome:
        with self._gateway.begin_unit_of_work(room_id) as uow:
            booking = uow.get(booking_id)
            if booking is None:
                return NotFoundError(booking_id=booking_id)

            moved = state_machine.transition(booking, target, at=self._clock())
            if not isinstance(moved, Booking):
                return moved

            uow.update(moved)
            uow.commit()
            return moved

    def _reschedule_once(self, room_id: int, booking_id: str, patch: ReschedulePatch) -> RescheduleOutcome:
        with self._gateway.begin_unit_of_work(room_id) as uow:
            booking = uow.get(booking_id)
            if booking is None:
                return NotFoundError(booking_id=booking_id)
            if not booking.is_live:
                return _rejected(
                    ValidationError(field_name="Status", message="Cancelled bookings cannot be rescheduled."),
                    room_id=room_id,
                )

            start, end = patch.apply_to(booking.interval)
            result = self._validator.validate(Candidate(room_id, start, end, booking.attendees, RESCHEDULE_FIELDS))
            if not result.ok:
                return _rejected(result.to_error(), room_id=room_id)

            interval = Interval(start=start, end=end)
            if has_conflict(uow, room_id, interval, excluding_booking_id=booking_id):
                return _conflict(room_id, interval)

            moved = booking.model_copy(update={"interval": interval})
            uow.update(moved)
            try:
                uow.commit()
            except OverlapViolationError:
                return _conflict(room_id, interval)
            return moved

    # -- plumbing --------------------------------------------------------------

    def _with_retries(self, action: str, attempt: Callable[[], T]) -> T:
        # Each attempt opens a fresh unit of work, so a room that moved under us
        # (RoomContentionError) is re-read, re-validated and re-checked.
        number = 1
        while True:
            try:
                return attempt()
            except PersistenceError as exc:
                if number >= self._max_attempts:
                    logger.error(
                        "Giving up after storage failures",
                        extra={"action": action, "attempts": number, "error": str(exc)},
                    )
                    raise
                logger.warning(
                    "Storage failure, retrying unit of work",
                    extra={"action": action, "attempt": number, "error": str(exc)},
                )
                time.sleep(self._retry_delay * number)
                number += 1

    def _publish(self, kind: EventKind, booking: Booking, acting_identity: str) -> None:
        if self._broadcaster is None:
            return
        try:
            self._broadcaster.publish(kind, booking, acting_identity)
        except Exception:
            logger.exception("Failed to publish booking event", extra={"booking_id": booking.booking_id, "kind": kind})


def _rejected(error: ValidationError, room_id: int) -> ValidationError:
    logger.info(
        "Booking request rejected",
        extra={"room_id": room_id, "field": error.field_name, "reason": error.message},
    )
    return error


def _conflict(room_id: int, interval: Interval) -> ConflictError:
    logger.info(
        "Requested interval unavailable",
        extra={"room_id": room_id, "start": interval.start, "end": interval.end},
    )
    return ConflictError(room_id=room_id, interval=interval)
