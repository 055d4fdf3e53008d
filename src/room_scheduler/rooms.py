from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from aws_lambda_powertools import Logger

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    DynamoDBTable = Any  # type: ignore[assignment]

from . import config
from .dal import storage_call
from .models import Room

logger = Logger()


class RoomDirectory(Protocol):
    def get_room(self, room_id: int) -> Room | None: ...

    def list_rooms(self) -> list[Room]: ...


class InMemoryRoomDirectory:
    def __init__(self, rooms: Iterable[Room] = ()) -> None:
        self._rooms = {room.room_id: room for room in rooms}

    def add(self, room: Room) -> None:
        self._rooms[room.room_id] = room

    def get_room(self, room_id: int) -> Room | None:
        return self._rooms.get(room_id)

    def list_rooms(self) -> list[Room]:
        return sorted(self._rooms.values(), key=lambda r: r.room_id)


class DynamoDBRoomDirectory:
    """Read-only view over the rooms table owned by room management."""

    def __init__(self, table: DynamoDBTable | None = None) -> None:
        self._table = table if table is not None else boto3.resource("dynamodb").Table(config.ROOMS_TABLE_NAME)

    def get_room(self, room_id: int) -> Room | None:
        resp = storage_call("get_room", self._table.get_item, Key={"room_id": room_id})
        item = resp.get("Item")
        if not isinstance(item, dict):
            logger.info("Room not found", extra={"room_id": room_id})
            return None
        return _to_room(item)

    def list_rooms(self) -> list[Room]:
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {}
        while True:
            resp = storage_call("list_rooms", self._table.scan, **kwargs)
            items.extend(it for it in resp.get("Items", []) if isinstance(it, dict))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return sorted((_to_room(it) for it in items), key=lambda r: r.room_id)


def _to_room(item: dict[str, Any]) -> Room:
    # DynamoDB numbers come back as Decimal
    return Room(
        room_id=int(item["room_id"]),
        name=item.get("name", ""),
        number=int(item.get("number", 0)),
        capacity=int(item["capacity"]),
        location=item.get("location", ""),
        is_active=bool(item.get("is_active", True)) and item.get("deleted_at") is None,
    )
