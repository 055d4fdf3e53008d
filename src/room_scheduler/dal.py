from __future__ import annotations

from datetime import UTC, datetime
from types import TracebackType
from typing import TYPE_CHECKING, Any, TypedDict, cast

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    # Only for static type checking; not imported at runtime
    from mypy_boto3_dynamodb.client import DynamoDBClient
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    # Fallbacks to satisfy annotations at runtime
    DynamoDBClient = Any  # type: ignore[assignment]
    DynamoDBTable = Any  # type: ignore[assignment]

from . import config
from .errors import OverlapViolationError, PersistenceError, RoomContentionError
from .gateway import new_booking_id
from .models import Booking, BookingDraft, BookingStatus, Interval

logger = Logger()

ROOM_INDEX = "room_id_index"
GUARD_PREFIX = "room-guard#"


class BookingItem(TypedDict, total=False):
    booking_id: str
    room_id: int
    requested_by: str
    start_time: str
    end_time: str
    status: str
    attendees: int
    created_at: str
    cancelled_at: str
    capacity_snapshot: int
    location_snapshot: str


class SlotItem(TypedDict):
    start: str
    end: str


class GuardItem(TypedDict, total=False):
    # One per room. ``slots`` holds the live intervals keyed by booking id and
    # ``version`` bumps on every commit, so it doubles as the room's overlap
    # index and its optimistic lock. It carries no start_time, which keeps it
    # out of the sparse room_id_index.
    booking_id: str
    room_id: int
    version: int
    slots: dict[str, SlotItem]


def _dt_to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def _iso_to_dt(s: str) -> datetime:
    return datetime.fromisoformat(s)


def guard_key(room_id: int) -> str:
    return f"{GUARD_PREFIX}{room_id}"


def storage_call(action: str, fn: Any, **kwargs: Any) -> dict[str, Any]:
    try:
        return cast(dict[str, Any], fn(**kwargs))
    except (BotoCoreError, ClientError) as exc:
        logger.warning("DynamoDB call failed", extra={"action": action, "error": str(exc)})
        raise PersistenceError(f"{action} failed: {exc}") from exc


class DynamoDBGateway:
    def __init__(self, table: DynamoDBTable | None = None) -> None:
        self._table = table if table is not None else boto3.resource("dynamodb").Table(config.TABLE_NAME)

    @property
    def table_name(self) -> str:
        return cast(str, self._table.name)

    @property
    def client(self) -> DynamoDBClient:
        # the resource's client accepts native Python types
        return cast(DynamoDBClient, self._table.meta.client)

    def begin_unit_of_work(self, room_id: int) -> DynamoDBUnitOfWork:
        return DynamoDBUnitOfWork(self, room_id)

    def get(self, booking_id: str) -> Booking | None:
        if booking_id.startswith(GUARD_PREFIX):
            return None
        resp = storage_call(
            "get_item", self._table.get_item, Key={"booking_id": booking_id}, ConsistentRead=True
        )
        item = resp.get("Item")
        if not isinstance(item, dict):
            return None
        return _to_model(cast(BookingItem, item))

    def list_for_room(self, room_id: int) -> list[Booking]:
        items: list[BookingItem] = []
        kwargs: dict[str, Any] = {
            "IndexName": ROOM_INDEX,
            "KeyConditionExpression": "room_id = :rid",
            "ExpressionAttributeValues": {":rid": room_id},
        }
        while True:
            resp = storage_call("query", self._table.query, **kwargs)
            items.extend(cast(BookingItem, it) for it in resp.get("Items", []) if isinstance(it, dict))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return [_to_model(it) for it in items]

    def read_guard(self, room_id: int) -> GuardItem:
        resp = storage_call(
            "get_item", self._table.get_item, Key={"booking_id": guard_key(room_id)}, ConsistentRead=True
        )
        item = resp.get("Item")
        if not isinstance(item, dict):
            return {"booking_id": guard_key(room_id), "room_id": room_id, "version": 0, "slots": {}}
        guard = cast(GuardItem, item)
        return {
            "booking_id": guard["booking_id"],
            "room_id": int(guard["room_id"]),
            "version": int(guard.get("version", 0)),
            "slots": dict(guard.get("slots", {})),
        }


class DynamoDBUnitOfWork:
    """Optimistic unit of work over one room's guard item.

    Reads come from the guard snapshot taken on entry. ``commit`` writes the
    bookings and the guard in a single transaction that only succeeds if the
    guard version is still the one we read.
    """

    def __init__(self, gateway: DynamoDBGateway, room_id: int) -> None:
        self.room_id = room_id
        self._gateway = gateway
        self._version = 0
        self._slots: dict[str, SlotItem] = {}
        self._staged: dict[str, Booking] = {}
        self._new_ids: set[str] = set()

    def __enter__(self) -> DynamoDBUnitOfWork:
        guard = self._gateway.read_guard(self.room_id)
        self._version = guard["version"]
        self._slots = guard["slots"]
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.rollback()

    def get(self, booking_id: str) -> Booking | None:
        staged = self._staged.get(booking_id)
        return staged if staged is not None else self._gateway.get(booking_id)

    def query_overlapping(
        self, room_id: int, interval: Interval, exclude_id: str | None = None
    ) -> list[Booking]:
        self._check_room(room_id)
        found: list[Booking] = []
        for booking_id, slot in self._slots.items():
            if booking_id == exclude_id or booking_id in self._staged:
                continue
            if _iso_to_dt(slot["start"]) < interval.end and interval.start < _iso_to_dt(slot["end"]):
                booking = self._gateway.get(booking_id)
                if booking is not None and booking.is_live:
                    found.append(booking)
        found.extend(
            b
            for b in self._staged.values()
            if b.booking_id != exclude_id and b.is_live and b.interval.overlaps(interval)
        )
        return found

    def insert(self, draft: BookingDraft) -> Booking:
        self._check_room(draft.room_id)
        booking = draft.with_id(new_booking_id())
        self._staged[booking.booking_id] = booking
        self._new_ids.add(booking.booking_id)
        return booking

    def update(self, booking: Booking) -> None:
        self._check_room(booking.room_id)
        self._staged[booking.booking_id] = booking

    def commit(self) -> None:
        if not self._staged:
            return
        slots = self._next_slots()
        table_name = self._gateway.table_name
        actions: list[dict[str, Any]] = []
        for booking_id, booking in self._staged.items():
            condition = "attribute_not_exists(booking_id)" if booking_id in self._new_ids else "attribute_exists(booking_id)"
            actions.append({"Put": {"TableName": table_name, "Item": _to_item(booking), "ConditionExpression": condition}})
        actions.append({"Put": self._guard_put(table_name, slots)})

        try:
            self._gateway.client.transact_write_items(TransactItems=actions)  # type: ignore[arg-type]
        except ClientError as exc:
            if _guard_condition_failed(exc, guard_index=len(actions) - 1):
                logger.warning("Room guard moved during unit of work", extra={"room_id": self.room_id})
                raise RoomContentionError(self.room_id) from exc
            logger.warning("Transaction failed", extra={"room_id": self.room_id, "error": str(exc)})
            raise PersistenceError(f"transact_write_items failed: {exc}") from exc
        except BotoCoreError as exc:
            raise PersistenceError(f"transact_write_items failed: {exc}") from exc

        logger.debug("Committed unit of work", extra={"room_id": self.room_id, "writes": len(self._staged)})
        self._version += 1
        self._slots = slots
        self._staged.clear()
        self._new_ids.clear()

    def rollback(self) -> None:
        self._staged.clear()
        self._new_ids.clear()

    def _next_slots(self) -> dict[str, SlotItem]:
        slots = dict(self._slots)
        for booking_id, booking in self._staged.items():
            slots.pop(booking_id, None)
            if not booking.is_live:
                continue
            for other_id, other in slots.items():
                if _iso_to_dt(other["start"]) < booking.interval.end and booking.interval.start < _iso_to_dt(other["end"]):
                    logger.warning(
                        "Range exclusion guard rejected write",
                        extra={"room_id": self.room_id, "booking_id": booking_id, "other": other_id},
                    )
                    raise OverlapViolationError(self.room_id)
            slots[booking_id] = {
                "start": _dt_to_iso(booking.interval.start),
                "end": _dt_to_iso(booking.interval.end),
            }
        return slots

    def _guard_put(self, table_name: str, slots: dict[str, SlotItem]) -> dict[str, Any]:
        put: dict[str, Any] = {
            "TableName": table_name,
            "Item": {
                "booking_id": guard_key(self.room_id),
                "room_id": self.room_id,
                "version": self._version + 1,
                "slots": slots,
            },
        }
        if self._version == 0:
            put["ConditionExpression"] = "attribute_not_exists(booking_id)"
        else:
            put["ConditionExpression"] = "#v = :seen"
            put["ExpressionAttributeNames"] = {"#v": "version"}
            put["ExpressionAttributeValues"] = {":seen": self._version}
        return put

    def _check_room(self, room_id: int) -> None:
        if room_id != self.room_id:
            raise ValueError(f"unit of work for room {self.room_id} cannot touch room {room_id}")


def _guard_condition_failed(exc: ClientError, guard_index: int) -> bool:
    if exc.response.get("Error", {}).get("Code") != "TransactionCanceledException":
        return False
    reasons = cast(list[dict[str, Any]], exc.response.get("CancellationReasons") or [])
    if len(reasons) <= guard_index:
        # older SDKs only report reasons in the message
        return "ConditionalCheckFailed" in str(exc)
    return reasons[guard_index].get("Code") == "ConditionalCheckFailed"


def _to_item(booking: Booking) -> BookingItem:
    item: BookingItem = {
        "booking_id": booking.booking_id,
        "room_id": booking.room_id,
        "requested_by": booking.requested_by,
        "start_time": _dt_to_iso(booking.interval.start),
        "end_time": _dt_to_iso(booking.interval.end),
        "status": booking.status.value,
        "attendees": booking.attendees,
        "created_at": _dt_to_iso(booking.created_at),
        "capacity_snapshot": booking.capacity_snapshot,
        "location_snapshot": booking.location_snapshot,
    }
    if booking.cancelled_at is not None:
        item["cancelled_at"] = _dt_to_iso(booking.cancelled_at)
    return item


def _to_model(item: BookingItem) -> Booking:
    cancelled_at = item.get("cancelled_at")
    return Booking(
        booking_id=item["booking_id"],
        room_id=int(item["room_id"]),
        requested_by=item["requested_by"],
        interval=Interval(start=_iso_to_dt(item["start_time"]), end=_iso_to_dt(item["end_time"])),
        status=BookingStatus(item.get("status", BookingStatus.PENDING.value)),
        attendees=int(item.get("attendees", 1)),
        created_at=_iso_to_dt(item["created_at"]),
        cancelled_at=_iso_to_dt(cancelled_at) if cancelled_at else None,
        capacity_snapshot=int(item.get("capacity_snapshot", 0)),
        location_snapshot=item.get("location_snapshot", ""),
    )
