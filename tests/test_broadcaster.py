from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from unittest.mock import MagicMock

from room_scheduler.broadcaster import ChangeBroadcaster, EventBridgeTransport
from room_scheduler.models import Booking, BookingEvent, BookingStatus, EventKind, Interval


def make_booking() -> Booking:
    return Booking(
        booking_id="b-1",
        room_id=1,
        requested_by="u-1",
        interval=Interval(
            start=datetime(2026, 3, 15, 9, 0, tzinfo=UTC),
            end=datetime(2026, 3, 15, 10, 0, tzinfo=UTC),
        ),
        status=BookingStatus.PENDING,
        created_at=datetime(2026, 3, 1, tzinfo=UTC),
        capacity_snapshot=10,
        location_snapshot="London",
    )


def test_publish_delivers_to_every_subscriber() -> None:
    broadcaster = ChangeBroadcaster(max_workers=1)
    first: list[BookingEvent] = []
    second: list[BookingEvent] = []
    broadcaster.subscribe(first.append)
    broadcaster.subscribe(second.append)

    future = broadcaster.publish(EventKind.CREATED, make_booking(), "u-1")
    assert future is not None
    future.result(timeout=2)
    broadcaster.shutdown()

    assert len(first) == len(second) == 1
    assert first[0].kind == EventKind.CREATED
    assert first[0].acting_identity == "u-1"
    assert first[0].booking.booking_id == "b-1"


def test_failing_subscriber_does_not_stop_others() -> None:
    broadcaster = ChangeBroadcaster(max_workers=1)
    received: list[BookingEvent] = []

    def broken(event: BookingEvent) -> None:
        raise ConnectionError("client went away")

    broadcaster.subscribe(broken)
    broadcaster.subscribe(received.append)
    future = broadcaster.publish(EventKind.UPDATED, make_booking(), "u-1")
    assert future is not None
    future.result(timeout=2)  # does not raise
    broadcaster.shutdown()
    assert len(received) == 1


def test_publish_does_not_wait_for_slow_subscriber() -> None:
    broadcaster = ChangeBroadcaster(max_workers=1)
    release = threading.Event()
    broadcaster.subscribe(lambda event: release.wait(5))

    future = broadcaster.publish(EventKind.CREATED, make_booking(), "u-1")
    assert future is not None
    assert not future.done()
    release.set()
    broadcaster.shutdown()


def test_unsubscribed_and_absent_subscribers() -> None:
    broadcaster = ChangeBroadcaster(max_workers=1)
    received: list[BookingEvent] = []
    broadcaster.subscribe(received.append)
    broadcaster.unsubscribe(received.append)
    assert broadcaster.publish(EventKind.CREATED, make_booking(), "u-1") is None
    broadcaster.shutdown()
    assert received == []


def test_publish_after_shutdown_is_dropped_quietly() -> None:
    broadcaster = ChangeBroadcaster(max_workers=1)
    broadcaster.subscribe(lambda event: None)
    broadcaster.shutdown()
    assert broadcaster.publish(EventKind.CREATED, make_booking(), "u-1") is None


def test_eventbridge_transport_emits_booking_event() -> None:
    fake_events = MagicMock()
    fake_events.put_events.return_value = {"FailedEntryCount": 0, "Entries": [{"EventId": "e-1"}]}
    transport = EventBridgeTransport(client=fake_events, bus_name="bookings-bus")

    event = BookingEvent(
        event_id="evt-1",
        kind=EventKind.CANCELLED,
        booking=make_booking(),
        acting_identity="manager",
        occurred_at=datetime(2026, 3, 15, 8, tzinfo=UTC),
    )
    transport(event)

    args, kwargs = fake_events.put_events.call_args
    entry = kwargs["Entries"][0]
    assert entry["Source"] == "booking.changes"
    assert entry["DetailType"] == "BookingCancelled"
    assert entry["EventBusName"] == "bookings-bus"
    detail = json.loads(entry["Detail"])
    assert detail["booking"]["booking_id"] == "b-1"
    assert detail["acting_identity"] == "manager"


def test_eventbridge_rejection_is_logged_by_broadcaster() -> None:
    fake_events = MagicMock()
    fake_events.put_events.return_value = {"FailedEntryCount": 1, "Entries": [{"ErrorCode": "InternalFailure"}]}
    broadcaster = ChangeBroadcaster(max_workers=1)
    broadcaster.subscribe(EventBridgeTransport(client=fake_events))

    future = broadcaster.publish(EventKind.CREATED, make_booking(), "u-1")
    assert future is not None
    future.result(timeout=2)
    broadcaster.shutdown()
    fake_events.put_events.assert_called_once()
