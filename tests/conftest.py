from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime

import pytest

from room_scheduler.broadcaster import ChangeBroadcaster
from room_scheduler.coordinator import SchedulingCoordinator
from room_scheduler.gateway import InMemoryGateway
from room_scheduler.models import BookingEvent, BookingRequest, Room
from room_scheduler.rooms import InMemoryRoomDirectory
from room_scheduler.validator import BookingValidator


def at(hour: int, minute: int = 0, day: int = 15) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


def request_for(room_id: int, start: datetime, end: datetime, attendees: int = 4, who: str = "alice") -> BookingRequest:
    return BookingRequest(room_id=room_id, requested_by=who, start=start, end=end, attendees=attendees)


@pytest.fixture()
def rooms() -> InMemoryRoomDirectory:
    return InMemoryRoomDirectory(
        [
            Room(room_id=1, name="Boardroom", number=101, capacity=10, location="London"),
            Room(room_id=2, name="Huddle", number=102, capacity=6, location="London"),
            Room(room_id=3, name="Closed", number=103, capacity=8, location="Cape Town", is_active=False),
        ]
    )


@pytest.fixture()
def gateway() -> InMemoryGateway:
    return InMemoryGateway(lock_timeout=2)


@pytest.fixture()
def events() -> list[BookingEvent]:
    return []


@pytest.fixture()
def broadcaster(events: list[BookingEvent]) -> Iterator[ChangeBroadcaster]:
    b = ChangeBroadcaster(max_workers=1)
    b.subscribe(events.append)
    yield b
    b.shutdown(wait=True)


@pytest.fixture()
def coordinator(
    gateway: InMemoryGateway, rooms: InMemoryRoomDirectory, broadcaster: ChangeBroadcaster
) -> SchedulingCoordinator:
    return SchedulingCoordinator(gateway, BookingValidator(rooms), broadcaster, auto_confirm=False, retry_delay=0)
