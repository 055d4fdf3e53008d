from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from aws_lambda_powertools import Logger

from . import config
from .broadcaster import ChangeBroadcaster, EventBridgeTransport
from .coordinator import SchedulingCoordinator
from .dal import DynamoDBGateway
from .gateway import InMemoryGateway, StorageGateway
from .rooms import DynamoDBRoomDirectory, InMemoryRoomDirectory, RoomDirectory
from .validator import BookingValidator

logger = Logger()


@dataclass(frozen=True)
class Services:
    gateway: StorageGateway
    rooms: RoomDirectory
    broadcaster: ChangeBroadcaster
    coordinator: SchedulingCoordinator


def build_services(
    gateway: StorageGateway,
    rooms: RoomDirectory,
    broadcaster: ChangeBroadcaster | None = None,
) -> Services:
    broadcaster = broadcaster or ChangeBroadcaster()
    coordinator = SchedulingCoordinator(gateway, BookingValidator(rooms), broadcaster)
    return Services(gateway=gateway, rooms=rooms, broadcaster=broadcaster, coordinator=coordinator)


@lru_cache(maxsize=1)
def default_services() -> Services:
    logger.info("Wiring scheduler", extra={"backend": config.STORAGE_BACKEND})
    if config.STORAGE_BACKEND == "memory":
        return build_services(InMemoryGateway(), InMemoryRoomDirectory())
    if config.STORAGE_BACKEND != "dynamodb":
        raise ValueError(f"unknown STORAGE_BACKEND {config.STORAGE_BACKEND!r}")

    broadcaster = ChangeBroadcaster()
    broadcaster.subscribe(EventBridgeTransport())
    return build_services(DynamoDBGateway(), DynamoDBRoomDirectory(), broadcaster)
