"""
Storage gateway contract and the in-process implementation.

A unit of work is scoped to one room. While it is open the gateway
guarantees that no other unit of work can commit to that room, so the
conflict query and the write it guards behave as one atomic step. Writes are
staged and only reach storage on ``commit``; leaving the ``with`` block
without committing discards them.
"""

from __future__ import annotations

import bisect
import threading
import uuid
from datetime import datetime
from types import TracebackType
from typing import Protocol

from aws_lambda_powertools import Logger

from . import config
from .errors import LockTimeoutError, OverlapViolationError
from .models import Booking, BookingDraft, Interval

logger = Logger()


class UnitOfWork(Protocol):
    room_id: int

    def __enter__(self) -> UnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...

    def get(self, booking_id: str) -> Booking | None: ...

    def query_overlapping(
        self, room_id: int, interval: Interval, exclude_id: str | None = None
    ) -> list[Booking]: ...

    def insert(self, draft: BookingDraft) -> Booking: ...

    def update(self, booking: Booking) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class StorageGateway(Protocol):
    def begin_unit_of_work(self, room_id: int) -> UnitOfWork: ...

    def get(self, booking_id: str) -> Booking | None: ...

    def list_for_room(self, room_id: int) -> list[Booking]: ...


def new_booking_id() -> str:
    return str(uuid.uuid4())


class InMemoryGateway:
    """Thread-safe gateway holding bookings in process memory.

    Mutations to one room are serialized by a per-room lock; other rooms
    proceed concurrently. ``commit`` re-checks that live bookings on the
    room do not overlap and refuses the write if they would.
    """

    def __init__(self, lock_timeout: float = config.LOCK_TIMEOUT_SECONDS) -> None:
        self.lock_timeout = lock_timeout
        self._bookings: dict[str, Booking] = {}
        # per room, (start, booking_id) sorted by start
        self._index: dict[int, list[tuple[datetime, str]]] = {}
        self._data_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._room_locks: dict[int, threading.Lock] = {}

    def begin_unit_of_work(self, room_id: int) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self, room_id)

    def get(self, booking_id: str) -> Booking | None:
        with self._data_lock:
            return self._bookings.get(booking_id)

    def list_for_room(self, room_id: int) -> list[Booking]:
        with self._data_lock:
            return [self._bookings[bid] for _, bid in self._index.get(room_id, [])]

    def _room_lock(self, room_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._room_locks.get(room_id)
            if lock is None:
                lock = self._room_locks[room_id] = threading.Lock()
            return lock

    def _candidates(self, room_id: int, interval: Interval) -> list[Booking]:
        # only bookings starting before interval.end can overlap it
        with self._data_lock:
            entries = self._index.get(room_id, [])
            stop = bisect.bisect_left(entries, (interval.end, ""))
            return [self._bookings[bid] for _, bid in entries[:stop]]

    def _apply(self, room_id: int, writes: dict[str, Booking]) -> None:
        with self._data_lock:
            merged = {bid: self._bookings[bid] for _, bid in self._index.get(room_id, [])}
            merged.update(writes)
            _ensure_no_overlap(room_id, list(merged.values()), set(writes))

            for booking_id, booking in writes.items():
                previous = self._bookings.get(booking_id)
                entries = self._index.setdefault(room_id, [])
                if previous is not None:
                    entries.remove((previous.interval.start, booking_id))
                bisect.insort(entries, (booking.interval.start, booking_id))
                self._bookings[booking_id] = booking


def _ensure_no_overlap(room_id: int, bookings: list[Booking], changed: set[str]) -> None:
    live = [b for b in bookings if b.is_live]
    for booking in live:
        if booking.booking_id not in changed:
            continue
        for other in live:
            if other.booking_id != booking.booking_id and other.interval.overlaps(booking.interval):
                logger.warning(
                    "Range exclusion guard rejected write",
                    extra={"room_id": room_id, "booking_id": booking.booking_id, "other": other.booking_id},
                )
                raise OverlapViolationError(room_id)


class InMemoryUnitOfWork:
    def __init__(self, gateway: InMemoryGateway, room_id: int) -> None:
        self.room_id = room_id
        self._gateway = gateway
        self._lock = gateway._room_lock(room_id)
        self._staged: dict[str, Booking] = {}
        self._held = False

    def __enter__(self) -> InMemoryUnitOfWork:
        if not self._lock.acquire(timeout=self._gateway.lock_timeout):
            raise LockTimeoutError(self.room_id, self._gateway.lock_timeout)
        self._held = True
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if self._staged:
                self.rollback()
        finally:
            self._release()

    def get(self, booking_id: str) -> Booking | None:
        staged = self._staged.get(booking_id)
        return staged if staged is not None else self._gateway.get(booking_id)

    def query_overlapping(
        self, room_id: int, interval: Interval, exclude_id: str | None = None
    ) -> list[Booking]:
        self._check_room(room_id)
        found = {b.booking_id: b for b in self._gateway._candidates(room_id, interval)}
        found.update(self._staged)
        return [
            b
            for b in found.values()
            if b.booking_id != exclude_id and b.is_live and b.interval.overlaps(interval)
        ]

    def insert(self, draft: BookingDraft) -> Booking:
        self._check_room(draft.room_id)
        booking = draft.with_id(new_booking_id())
        self._staged[booking.booking_id] = booking
        return booking

    def update(self, booking: Booking) -> None:
        self._check_room(booking.room_id)
        self._staged[booking.booking_id] = booking

    def commit(self) -> None:
        if not self._held:
            raise RuntimeError("unit of work is not open")
        writes, self._staged = self._staged, {}
        if writes:
            self._gateway._apply(self.room_id, writes)
            logger.debug("Committed unit of work", extra={"room_id": self.room_id, "writes": len(writes)})

    def rollback(self) -> None:
        if self._staged:
            logger.debug("Discarding staged writes", extra={"room_id": self.room_id, "writes": len(self._staged)})
        self._staged.clear()

    def _check_room(self, room_id: int) -> None:
        if room_id != self.room_id:
            raise ValueError(f"unit of work for room {self.room_id} cannot touch room {room_id}")

    def _release(self) -> None:
        if self._held:
            self._held = False
            self._lock.release()
