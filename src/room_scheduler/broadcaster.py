from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

import boto3
from aws_lambda_powertools import Logger

from . import config
from .models import Booking, BookingEvent, EventKind

logger = Logger()

Subscriber = Callable[[BookingEvent], None]

EVENT_SOURCE = "booking.changes"
# names the push-channel clients listen for
DETAIL_TYPES = {
    EventKind.CREATED: "BookingCreated",
    EventKind.UPDATED: "BookingUpdated",
    EventKind.CANCELLED: "BookingCancelled",
    EventKind.DELETED: "BookingDeleted",
}


class EventBridgeTransport:
    """Forwards booking events to an EventBridge bus."""

    def __init__(self, client: Any = None, bus_name: str = config.EVENT_BUS_NAME) -> None:
        self._events = client if client is not None else boto3.client("events")
        self._bus_name = bus_name

    def __call__(self, event: BookingEvent) -> None:
        detail = {
            "version": "1.0",
            "type": DETAIL_TYPES[event.kind],
            "event_id": event.event_id,
            "acting_identity": event.acting_identity,
            "booking": event.booking.model_dump(mode="json"),
        }
        resp = self._events.put_events(
            Entries=[
                {
                    "Source": EVENT_SOURCE,
                    "DetailType": DETAIL_TYPES[event.kind],
                    "Detail": json.dumps(detail),
                    "EventBusName": self._bus_name,
                }
            ]
        )
        if resp.get("FailedEntryCount"):
            raise RuntimeError(f"EventBridge rejected event {event.event_id}: {resp.get('Entries')}")


class ChangeBroadcaster:
    """Best-effort fan-out of committed booking changes.

    ``publish`` hands the event to a worker pool and returns at once. Nothing
    is retried or queued for later: a subscriber that misses an event is
    expected to re-fetch. Subscriber failures are logged and never reach the
    caller.
    """

    def __init__(self, max_workers: int = config.BROADCAST_WORKERS) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="broadcast")

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def publish(self, kind: EventKind, booking: Booking, acting_identity: str) -> Future[None] | None:
        event = BookingEvent(
            event_id=str(uuid.uuid4()),
            kind=kind,
            booking=booking,
            acting_identity=acting_identity,
            occurred_at=datetime.now(UTC),
        )
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return None
        try:
            return self._executor.submit(self._deliver, event, subscribers)
        except RuntimeError:
            # pool already shut down
            logger.exception("Dropped booking event", extra={"event_id": event.event_id, "kind": kind})
            return None

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _deliver(self, event: BookingEvent, subscribers: list[Subscriber]) -> None:
        logger.info(
            "Publishing booking event",
            extra={"event_id": event.event_id, "kind": event.kind, "booking_id": event.booking.booking_id},
        )
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception(
                    "Subscriber failed to handle booking event",
                    extra={"event_id": event.event_id, "subscriber": getattr(subscriber, "__name__", repr(subscriber))},
                )
