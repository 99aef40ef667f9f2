import datetime
from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchbook.auth.dependencies import get_current_user
from matchbook.core import config
from matchbook.database import ensure_scheduling_schema, get_db
from matchbook.errors import SchedulingError
from matchbook.models.booking import BookingStatus
from matchbook.models.user import User
from matchbook.services import booking_service
from matchbook.services.booking_service import SlotRequest

router = APIRouter(tags=['bookings'])

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL.'


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_MESSAGE_LENGTH:
        raise ValueError(f'Text must be {config.MAX_MESSAGE_LENGTH} characters or fewer.')

    return normalized


class SlotSelection(BaseModel):
    date: date
    start_time: time
    end_time: time
    availability_id: int | None = None


class CreateBookingRequest(BaseModel):
    opponent_id: int
    date: date
    start_time: time
    end_time: time
    availability_id: int | None = None
    court_location: str | None = None
    message: str | None = None
    timezone: str | None = None

    @field_validator('court_location', 'message')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)


class CreateBatchRequest(BaseModel):
    opponent_id: int
    slots: list[SlotSelection]
    court_location: str | None = None
    message: str | None = None
    timezone: str | None = None

    @field_validator('slots')
    @classmethod
    def validate_slots(cls, value: list[SlotSelection]) -> list[SlotSelection]:
        if not value:
            raise ValueError('Select at least one time slot.')
        if len(value) > config.MAX_BATCH_SLOTS:
            raise ValueError(f'You can request at most {config.MAX_BATCH_SLOTS} slots at once.')
        return value

    @field_validator('court_location', 'message')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)


class ProposeTimeRequest(BaseModel):
    date: date
    start_time: time
    end_time: time


class BookingResponse(BaseModel):
    id: int
    requester_id: int
    opponent_id: int
    availability_id: int | None = None
    date: date
    start_time: time
    end_time: time
    timezone: str
    status: BookingStatus
    proposed_date: datetime.date | None = None
    proposed_start_time: time | None = None
    proposed_end_time: time | None = None
    proposed_by_id: int | None = None
    proposal_count: int = 0
    court_location: str | None = None
    message: str | None = None

    class Config:
        from_attributes = True


class SlotOutcomeResponse(BaseModel):
    date: date
    start_time: time
    end_time: time
    booking: BookingResponse | None = None
    error: dict | None = None


def raise_http_error(exc: SchedulingError) -> None:
    raise HTTPException(status_code=exc.http_status, detail=exc.to_dict()) from exc


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def database_unavailable(db: Session, exc: SQLAlchemyError) -> None:
    db.rollback()
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE,
    ) from exc


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.create_booking(
            db,
            current_user.id,
            data.opponent_id,
            data.date,
            data.start_time,
            data.end_time,
            availability_id=data.availability_id,
            location=data.court_location,
            message=data.message,
            timezone=data.timezone,
        )
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)


@router.post('/batch', response_model=list[SlotOutcomeResponse])
def create_booking_batch(
    data: CreateBatchRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        outcomes = booking_service.create_bookings(
            db,
            current_user.id,
            data.opponent_id,
            [
                SlotRequest(slot.date, slot.start_time, slot.end_time, slot.availability_id)
                for slot in data.slots
            ],
            location=data.court_location,
            message=data.message,
            timezone=data.timezone,
        )
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)

    return [
        SlotOutcomeResponse(
            date=outcome.date,
            start_time=outcome.start_time,
            end_time=outcome.end_time,
            booking=BookingResponse.model_validate(outcome.booking) if outcome.ok else None,
            error=outcome.error.to_dict() if outcome.error is not None else None,
        )
        for outcome in outcomes
    ]


@router.get('', response_model=list[BookingResponse])
def list_my_bookings(
    booking_status: list[BookingStatus] | None = Query(default=None, alias='status'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.list_bookings_for_user(db, current_user.id, statuses=booking_status or None)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def _transition(db: Session, operation, booking_id: int, actor_id: int, *args):
    ensure_database_ready()

    try:
        return operation(db, booking_id, actor_id, *args)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)


@router.post('/{booking_id}/accept', response_model=BookingResponse)
def accept_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, booking_service.accept_booking, booking_id, current_user.id)


@router.post('/{booking_id}/decline', response_model=BookingResponse)
def decline_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, booking_service.decline_booking, booking_id, current_user.id)


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, booking_service.cancel_booking, booking_id, current_user.id)


@router.post('/{booking_id}/propose', response_model=BookingResponse)
def propose_new_time(
    booking_id: int,
    data: ProposeTimeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(
        db,
        booking_service.propose_new_time,
        booking_id,
        current_user.id,
        data.date,
        data.start_time,
        data.end_time,
    )


@router.post('/{booking_id}/accept-proposal', response_model=BookingResponse)
def accept_proposed_time(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, booking_service.accept_proposed_time, booking_id, current_user.id)
