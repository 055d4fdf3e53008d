from __future__ import annotations

from datetime import datetime

from .gateway import StorageGateway
from .models import Booking, Room
from .rooms import RoomDirectory


def _live(gateway: StorageGateway, room_id: int) -> list[Booking]:
    return [b for b in gateway.list_for_room(room_id) if b.is_live]


def active_booking(gateway: StorageGateway, room_id: int, at: datetime) -> Booking | None:
    """The live booking occupying ``room_id`` at ``at``, if any."""
    return next((b for b in _live(gateway, room_id) if b.interval.covers(at)), None)


def next_booking(gateway: StorageGateway, room_id: int, at: datetime) -> Booking | None:
    upcoming = [b for b in _live(gateway, room_id) if b.interval.start > at]
    return min(upcoming, key=lambda b: b.interval.start, default=None)


def available_rooms(rooms: RoomDirectory, gateway: StorageGateway, at: datetime) -> list[Room]:
    return [
        room
        for room in rooms.list_rooms()
        if room.is_active and active_booking(gateway, room.room_id, at) is None
    ]
