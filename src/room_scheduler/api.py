from datetime import UTC, datetime
from typing import Annotated, Any

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.metrics import Metrics, MetricUnit
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import AwareDatetime, BaseModel

from room_scheduler import availability
from room_scheduler.bootstrap import Services, default_services
from room_scheduler.errors import ConflictError, InvalidStateTransition, NotFoundError, PersistenceError, ValidationError
from room_scheduler.models import Booking, BookingRequest, BookingStatus, ReschedulePatch, Room

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="RoomScheduler")

app = FastAPI(title="Room Scheduler", version="0.1.0")

ANONYMOUS = "anonymous"

ServicesDep = Annotated[Services, Depends(default_services)]
IdentityDep = Annotated[str, Header(alias="X-Acting-Identity")]


class BookingCreate(BaseModel):
    room_id: int
    start: AwareDatetime
    end: AwareDatetime
    attendees: int = 1


class StatusChange(BaseModel):
    status: BookingStatus


class RoomAvailability(BaseModel):
    room_id: int
    at: datetime
    is_available: bool
    active_booking: Booking | None = None
    next_booking: Booking | None = None


def _at(at: datetime | None) -> datetime:
    if at is None:
        return datetime.now(UTC)
    return at if at.tzinfo is not None else at.replace(tzinfo=UTC)


def _unwrap(outcome: Any) -> Booking:
    """Map a coordinator outcome to the booking or an HTTP error."""
    if isinstance(outcome, Booking):
        return outcome
    if isinstance(outcome, ValidationError):
        metrics.add_metric(name="BookingRejected", value=1, unit=MetricUnit.Count)
        raise HTTPException(
            status_code=422,
            detail={"kind": outcome.kind, "field": outcome.field_name, "message": outcome.message},
        )
    if isinstance(outcome, ConflictError):
        metrics.add_metric(name="BookingConflict", value=1, unit=MetricUnit.Count)
        raise HTTPException(
            status_code=409,
            detail={
                "kind": outcome.kind,
                "room_id": outcome.room_id,
                "start": outcome.interval.start.isoformat(),
                "end": outcome.interval.end.isoformat(),
                "message": outcome.message,
            },
        )
    if isinstance(outcome, InvalidStateTransition):
        raise HTTPException(
            status_code=409,
            detail={
                "kind": outcome.kind,
                "from": outcome.from_status.value,
                "to": outcome.to_status.value,
                "message": outcome.message,
            },
        )
    if isinstance(outcome, NotFoundError):
        raise HTTPException(status_code=404, detail="Booking not found")
    raise TypeError(f"unexpected outcome {outcome!r}")


@app.exception_handler(PersistenceError)
def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.exception("Storage unavailable", extra={"path": request.url.path})
    return JSONResponse(status_code=503, content={"detail": "Booking storage is temporarily unavailable"})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/bookings", response_model=Booking, status_code=201)
@tracer.capture_method
def create_booking(payload: BookingCreate, services: ServicesDep, identity: IdentityDep = ANONYMOUS) -> Booking:
    request = BookingRequest(
        room_id=payload.room_id,
        requested_by=identity,
        start=payload.start,
        end=payload.end,
        attendees=payload.attendees,
    )
    booking = _unwrap(services.coordinator.create(request, identity))
    metrics.add_metric(name="BookingCreated", value=1, unit=MetricUnit.Count)
    return booking


@app.get("/bookings/{booking_id}", response_model=Booking)
@tracer.capture_method
def get_booking(booking_id: str, services: ServicesDep) -> Booking:
    return _unwrap(services.coordinator.get(booking_id))


@app.post("/bookings/{booking_id}/status", response_model=Booking)
@tracer.capture_method
def change_status(
    booking_id: str, payload: StatusChange, services: ServicesDep, identity: IdentityDep = ANONYMOUS
) -> Booking:
    return _unwrap(services.coordinator.change_status(booking_id, payload.status, identity))


@app.post("/bookings/{booking_id}/confirm", response_model=Booking)
@tracer.capture_method
def confirm_booking(booking_id: str, services: ServicesDep, identity: IdentityDep = ANONYMOUS) -> Booking:
    return _unwrap(services.coordinator.confirm(booking_id, identity))


@app.post("/bookings/{booking_id}/cancel", response_model=Booking)
@tracer.capture_method
def cancel_booking(booking_id: str, services: ServicesDep, identity: IdentityDep = ANONYMOUS) -> Booking:
    return _unwrap(services.coordinator.cancel(booking_id, identity))


@app.patch("/bookings/{booking_id}", response_model=Booking)
@tracer.capture_method
def reschedule_booking(
    booking_id: str, payload: ReschedulePatch, services: ServicesDep, identity: IdentityDep = ANONYMOUS
) -> Booking:
    return _unwrap(services.coordinator.reschedule(booking_id, payload, identity))


@app.get("/rooms/available", response_model=list[Room])
@tracer.capture_method
def list_available_rooms(services: ServicesDep, at: datetime | None = None) -> list[Room]:
    return availability.available_rooms(services.rooms, services.gateway, _at(at))


@app.get("/rooms/{room_id}/bookings", response_model=list[Booking])
@tracer.capture_method
def list_room_bookings(room_id: int, services: ServicesDep) -> list[Booking]:
    return services.coordinator.list_for_room(room_id)


@app.get("/rooms/{room_id}/availability", response_model=RoomAvailability)
@tracer.capture_method
def room_availability(room_id: int, services: ServicesDep, at: datetime | None = None) -> RoomAvailability:
    if services.rooms.get_room(room_id) is None:
        raise HTTPException(status_code=404, detail="Room not found")
    instant = _at(at)
    active = availability.active_booking(services.gateway, room_id, instant)
    return RoomAvailability(
        room_id=room_id,
        at=instant,
        is_available=active is None,
        active_booking=active,
        next_booking=availability.next_booking(services.gateway, room_id, instant),
    )
