import datetime
from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchbook.auth.dependencies import get_current_user
from matchbook.database import ensure_scheduling_schema, get_db
from matchbook.errors import SchedulingError
from matchbook.models.availability import Visibility
from matchbook.models.user import User
from matchbook.services import availability_service, conflict_detector
from matchbook.services.recurrence import RecurrenceRule, decode_rule, describe_rule

router = APIRouter(tags=['availability'])

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL.'


def _normalize_visibility(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip().lower()
    if normalized not in {item.value for item in Visibility}:
        raise ValueError("Visibility must be 'private' or 'public'.")
    return normalized


class CreateWindowRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    is_available: bool = True
    is_blocked: bool = False
    timezone: str | None = None
    visibility: str = Visibility.PRIVATE.value
    notes: str | None = None
    recurrence: RecurrenceRule | None = None

    @field_validator('visibility')
    @classmethod
    def validate_visibility(cls, value: str) -> str:
        return _normalize_visibility(value)


class UpdateWindowRequest(BaseModel):
    date: datetime.date | None = None
    start_time: time | None = None
    end_time: time | None = None
    is_available: bool | None = None
    is_blocked: bool | None = None
    timezone: str | None = None
    visibility: str | None = None
    notes: str | None = None

    @field_validator('visibility')
    @classmethod
    def validate_visibility(cls, value: str | None) -> str | None:
        return _normalize_visibility(value)


class WindowResponse(BaseModel):
    id: int
    owner_id: int
    date: date
    start_time: time
    end_time: time
    is_available: bool
    is_blocked: bool
    timezone: str
    visibility: Visibility
    notes: str | None = None
    recurrence_rule: str | None = None
    recurrence_description: str | None = None

    class Config:
        from_attributes = True


class UnitResponse(BaseModel):
    window_id: int | None = None
    date: date
    start_time: time
    end_time: time
    timezone: str
    end_day_offset: int = 0
    source_date: date
    source_start_time: time
    source_end_time: time
    source_timezone: str
    notes: str | None = None


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


def to_window_response(window) -> WindowResponse:
    response = WindowResponse.model_validate(window)
    rule = decode_rule(window.recurrence_rule)
    if rule is not None:
        response.recurrence_description = describe_rule(rule)
    return response


@router.post('/windows', response_model=list[WindowResponse], status_code=status.HTTP_201_CREATED)
def create_window(
    data: CreateWindowRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        windows = availability_service.create_window(
            db,
            current_user.id,
            data.date,
            data.start_time,
            data.end_time,
            is_available=data.is_available,
            is_blocked=data.is_blocked,
            timezone=data.timezone or current_user.timezone,
            visibility=data.visibility,
            notes=data.notes,
            recurrence=data.recurrence,
        )
        return [to_window_response(window) for window in windows]
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.patch('/windows/{window_id}', response_model=WindowResponse)
def update_window(
    window_id: int,
    data: UpdateWindowRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    changes = data.model_dump(exclude_unset=True)
    try:
        window = availability_service.update_window(db, window_id, current_user.id, **changes)
        return to_window_response(window)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.delete('/windows/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_window(
    window_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        availability_service.delete_window(db, window_id, current_user.id)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/users/{owner_id}/windows', response_model=list[WindowResponse])
def list_windows(
    owner_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        windows = availability_service.list_availability(
            db,
            owner_id,
            start_date,
            end_date,
            viewer_id=current_user.id,
        )
        return [to_window_response(window) for window in windows]
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/users/{owner_id}/units', response_model=list[UnitResponse])
def list_bookable_units(
    owner_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    viewer_timezone: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        units = availability_service.available_units(
            db,
            owner_id,
            start_date,
            end_date,
            conflict_detector.taken_checker(db, owner_id),
            viewer_id=current_user.id,
        )
        displayed = availability_service.display_units(units, viewer_timezone or current_user.timezone)

        return [
            UnitResponse(
                window_id=item.unit.window_id,
                date=item.date,
                start_time=item.start_time,
                end_time=item.end_time,
                timezone=item.timezone,
                end_day_offset=item.end_day_offset,
                source_date=item.unit.date,
                source_start_time=item.unit.start_time,
                source_end_time=item.unit.end_time,
                source_timezone=item.unit.timezone,
                notes=item.unit.notes,
            )
            for item in displayed
        ]
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
