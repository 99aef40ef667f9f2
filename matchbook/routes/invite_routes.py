import datetime
from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchbook.auth.dependencies import get_current_user
from matchbook.core import config
from matchbook.database import ensure_scheduling_schema, get_db
from matchbook.errors import InvalidStateTransition, SchedulingError
from matchbook.models.invite import InviteStatus
from matchbook.models.user import User
from matchbook.services import invite_service

router = APIRouter(tags=['invites'])

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL.'


class SendInviteRequest(BaseModel):
    receiver_id: int
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
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > config.MAX_MESSAGE_LENGTH:
            raise ValueError(f'Text must be {config.MAX_MESSAGE_LENGTH} characters or fewer.')

        return normalized


class RespondRequest(BaseModel):
    response: str

    @field_validator('response')
    @classmethod
    def validate_response(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in invite_service.RESPONSES:
            raise ValueError("Response must be 'accepted' or 'declined'.")
        return normalized


class RescheduleRequest(BaseModel):
    date: date
    start_time: time
    end_time: time


class CancelInviteRequest(BaseModel):
    reason: str | None = None


class InviteResponse(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    date: date
    start_time: time
    end_time: time
    timezone: str
    status: InviteStatus
    reschedule_count: int
    proposed_date: datetime.date | None = None
    proposed_start_time: time | None = None
    proposed_end_time: time | None = None
    proposed_by_id: int | None = None
    court_location: str | None = None
    message: str | None = None
    cancellation_reason: str | None = None
    expires_at: datetime.datetime | None = None

    class Config:
        from_attributes = True


class InviteActionsResponse(BaseModel):
    invite_id: int
    status: InviteStatus
    reschedules_remaining: int
    actions: list[str]


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


@router.post('', response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
def send_invite(
    data: SendInviteRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return invite_service.send_invite(
            db,
            current_user.id,
            data.receiver_id,
            data.date,
            data.start_time,
            data.end_time,
            availability_id=data.availability_id,
            location=data.court_location,
            message=data.message,
            timezone=data.timezone or current_user.timezone,
        )
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)


@router.get('/pending', response_model=list[InviteResponse])
def list_pending_invites(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        invite_service.expire_pending_invites(db)
        return invite_service.pending_invites_for_user(db, current_user.id)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)


@router.get('/sent', response_model=list[InviteResponse])
def list_sent_invites(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return invite_service.sent_invites_for_user(db, current_user.id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.post('/{invite_id}/respond', response_model=InviteResponse)
def respond_to_invite(
    invite_id: int,
    data: RespondRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return invite_service.respond_to_invite(db, invite_id, current_user.id, data.response)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)


@router.post('/{invite_id}/reschedule', response_model=InviteResponse)
def propose_reschedule(
    invite_id: int,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return invite_service.propose_reschedule(
            db,
            invite_id,
            current_user.id,
            data.date,
            data.start_time,
            data.end_time,
        )
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)


@router.post('/{invite_id}/cancel', response_model=InviteResponse)
def cancel_invite(
    invite_id: int,
    data: CancelInviteRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return invite_service.cancel_invite(db, invite_id, current_user.id, data.reason)
    except SchedulingError as exc:
        raise_http_error(exc)
    except SQLAlchemyError as exc:
        database_unavailable(db, exc)


@router.get('/{invite_id}/actions', response_model=InviteActionsResponse)
def list_invite_actions(
    invite_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        invite = invite_service.get_invite(db, invite_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    if invite is None or current_user.id not in invite.participant_ids:
        raise_http_error(InvalidStateTransition(None, 'view actions for', actor_id=current_user.id))

    return InviteActionsResponse(
        invite_id=invite.id,
        status=invite.status,
        reschedules_remaining=max(0, config.MAX_RESCHEDULE_ATTEMPTS - invite.reschedule_count),
        actions=invite_service.available_actions(invite, current_user.id),
    )
