from __future__ import annotations

from .gateway import UnitOfWork
from .models import Booking, Interval


def find_conflicts(
    uow: UnitOfWork,
    room_id: int,
    interval: Interval,
    excluding_booking_id: str | None = None,
) -> list[Booking]:
    """Live bookings on ``room_id`` overlapping ``interval``.

    Overlap is half-open: a booking ending exactly when ``interval`` starts
    is not a conflict. The gateway answers from its per-room index; the
    filter here guards against a gateway returning a wider candidate set.
    """
    return [
        booking
        for booking in uow.query_overlapping(room_id, interval, excluding_booking_id)
        if booking.is_live and booking.booking_id != excluding_booking_id and booking.interval.overlaps(interval)
    ]


def has_conflict(
    uow: UnitOfWork,
    room_id: int,
    interval: Interval,
    excluding_booking_id: str | None = None,
) -> bool:
    return bool(find_conflicts(uow, room_id, interval, excluding_booking_id))
