from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from room_scheduler import state_machine
from room_scheduler.errors import InvalidStateTransition
from room_scheduler.models import Booking, BookingStatus, Interval

S = BookingStatus


def booking_factory(**overrides: Any) -> Booking:
    base: dict[str, Any] = dict(
        booking_id="b-1",
        room_id=1,
        requested_by="alice",
        interval=Interval(
            start=datetime(2026, 3, 15, 9, 0, tzinfo=UTC),
            end=datetime(2026, 3, 15, 10, 0, tzinfo=UTC),
        ),
        status=S.PENDING,
        created_at=datetime(2026, 3, 1, tzinfo=UTC),
        capacity_snapshot=10,
        location_snapshot="London",
    )
    base.update(overrides)
    return Booking(**base)


@pytest.mark.parametrize(
    ("start", "target"),
    [(S.PENDING, S.CONFIRMED), (S.PENDING, S.CANCELLED), (S.CONFIRMED, S.CANCELLED)],
)
def test_allowed_transitions(start: BookingStatus, target: BookingStatus) -> None:
    booking = booking_factory(status=start)
    moved = state_machine.transition(booking, target)
    assert isinstance(moved, Booking)
    assert moved.status == target
    assert booking.status == start  # original untouched


@pytest.mark.parametrize(
    ("start", "target"),
    [
        (S.CONFIRMED, S.PENDING),
        (S.PENDING, S.PENDING),
        (S.CONFIRMED, S.CONFIRMED),
        (S.CANCELLED, S.PENDING),
        (S.CANCELLED, S.CONFIRMED),
        (S.CANCELLED, S.CANCELLED),
    ],
)
def test_rejected_transitions_carry_from_and_to(start: BookingStatus, target: BookingStatus) -> None:
    extra: dict[str, Any] = {}
    if start == S.CANCELLED:
        extra["cancelled_at"] = datetime(2026, 3, 2, tzinfo=UTC)
    outcome = state_machine.transition(booking_factory(status=start, **extra), target)
    assert outcome == InvalidStateTransition(from_status=start, to_status=target)


def test_cancel_stamps_cancelled_at_once() -> None:
    when = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
    cancelled = state_machine.transition(booking_factory(status=S.CONFIRMED), S.CANCELLED, at=when)
    assert isinstance(cancelled, Booking)
    assert cancelled.cancelled_at == when

    again = state_machine.transition(cancelled, S.CANCELLED, at=datetime(2026, 3, 11, tzinfo=UTC))
    assert isinstance(again, InvalidStateTransition)
    assert cancelled.cancelled_at == when


def test_confirm_leaves_cancelled_at_unset() -> None:
    confirmed = state_machine.transition(booking_factory(), S.CONFIRMED)
    assert isinstance(confirmed, Booking)
    assert confirmed.cancelled_at is None


def test_allowed_targets_table() -> None:
    assert state_machine.allowed_targets(S.PENDING) == {S.CONFIRMED, S.CANCELLED}
    assert state_machine.allowed_targets(S.CONFIRMED) == {S.CANCELLED}
    assert state_machine.allowed_targets(S.CANCELLED) == frozenset()
    assert not state_machine.can_transition(S.CONFIRMED, S.PENDING)


def test_booking_rejects_cancelled_at_without_cancelled_status() -> None:
    with pytest.raises(ValueError):
        booking_factory(status=S.CONFIRMED, cancelled_at=datetime(2026, 3, 2, tzinfo=UTC))
