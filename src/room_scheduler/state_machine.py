from __future__ import annotations

from datetime import UTC, datetime

from aws_lambda_powertools import Logger

from .errors import InvalidStateTransition
from .models import Booking, BookingStatus

logger = Logger()

# Legal moves only. Anything absent, including X -> X, is rejected.
TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}


def allowed_targets(current: BookingStatus) -> frozenset[BookingStatus]:
    return TRANSITIONS[current]


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(
    booking: Booking, target: BookingStatus, at: datetime | None = None
) -> Booking | InvalidStateTransition:
    """Return a copy of ``booking`` moved to ``target``.

    Entering ``cancelled`` stamps ``cancelled_at``. Conflict checks are not
    made here; the caller owns those.
    """
    if not can_transition(booking.status, target):
        logger.info(
            "Rejected status transition",
            extra={"booking_id": booking.booking_id, "from": booking.status, "to": target},
        )
        return InvalidStateTransition(from_status=booking.status, to_status=target)

    update: dict[str, object] = {"status": target}
    if target == BookingStatus.CANCELLED:
        update["cancelled_at"] = at or datetime.now(UTC)
    return booking.model_copy(update=update)
