"""Match invites: the lighter negotiation with a capped reschedule budget.

An invite does not hold slot claims while it is being negotiated; both
players' increments are claimed only when it is accepted.
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchbook.core import config
from matchbook.core.timeutils import normalize_zone_name
from matchbook.core.validators import ensure_distinct_players, normalize_text, validate_slot
from matchbook.errors import (
    InvalidStateTransition,
    RescheduleLimitExceeded,
    ValidationError,
)
from matchbook.models.availability import utcnow
from matchbook.models.invite import OPEN_INVITE_STATUSES, Invite, InviteStatus
from matchbook.services import conflict_detector
from matchbook.services.notifications import EventKind, Notifier, SchedulingEvent, emit

logger = logging.getLogger(__name__)

RESPONSES = {
    'accepted': InviteStatus.ACCEPTED,
    'declined': InviteStatus.DECLINED,
}


def _status_value(invite: Invite) -> str:
    return InviteStatus(invite.status).value


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def _notify(notifier, kind: EventKind, invite: Invite, actor_id: int | None, recipient_id: int, **extra) -> None:
    payload = {
        'date': invite.date.isoformat(),
        'start_time': invite.start_time.isoformat(),
        'end_time': invite.end_time.isoformat(),
        'timezone': invite.timezone,
        'status': _status_value(invite),
        'reschedule_count': invite.reschedule_count,
    }
    payload.update(extra)
    emit(
        notifier,
        SchedulingEvent(
            kind=kind,
            record_id=invite.id,
            actor_id=actor_id,
            recipient_id=recipient_id,
            payload=payload,
        ),
    )


def _expiry_from(now: datetime) -> datetime:
    return now + timedelta(hours=config.INVITE_EXPIRY_HOURS)


def get_invite(db: Session, invite_id: int) -> Invite | None:
    return db.get(Invite, invite_id)


def _load_open(db: Session, invite_id: int, attempted: str, actor_id: int) -> Invite:
    invite = get_invite(db, invite_id)
    if invite is None:
        raise InvalidStateTransition(None, attempted, actor_id=actor_id)

    if not invite.is_open:
        raise InvalidStateTransition(_status_value(invite), attempted, actor_id=actor_id)

    if actor_id not in invite.participant_ids:
        raise InvalidStateTransition(
            _status_value(invite),
            attempted,
            message=f'Only the players in invite {invite.id} can {attempted} it.',
            actor_id=actor_id,
        )
    return invite


def _is_due(invite: Invite, now: datetime) -> bool:
    return invite.expires_at is not None and invite.expires_at <= now


def _mark_expired(invite: Invite) -> None:
    invite.status = InviteStatus.EXPIRED
    invite.clear_proposal()


def _reject_if_expired(db: Session, invite: Invite, attempted: str, actor_id: int, now: datetime, notifier) -> None:
    if not _is_due(invite, now):
        return

    _mark_expired(invite)
    _commit(db)
    logger.info('invite %s expired before user %s could %s it', invite.id, actor_id, attempted)
    _notify(notifier, EventKind.INVITE_EXPIRED, invite, None, invite.sender_id)
    raise InvalidStateTransition(
        _status_value(invite),
        attempted,
        message=f'Invite {invite.id} expired and can no longer be changed.',
        actor_id=actor_id,
    )


def _may_respond(invite: Invite, actor_id: int) -> bool:
    if invite.status == InviteStatus.PENDING:
        return actor_id == invite.receiver_id
    if invite.status == InviteStatus.RESCHEDULED:
        return actor_id in invite.participant_ids and actor_id != invite.proposed_by_id
    return False


def send_invite(
    db: Session,
    sender_id: int,
    receiver_id: int,
    slot_date: date | str,
    start: time | str,
    end: time | str,
    *,
    availability_id: int | None = None,
    location: str | None = None,
    message: str | None = None,
    timezone: str | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Invite:
    ensure_distinct_players(sender_id, receiver_id)
    invite_date, start_time, end_time = validate_slot(slot_date, start, end)
    zone_name = normalize_zone_name(timezone)

    for user_id in (receiver_id, sender_id):
        conflict_detector.check_slot(
            db,
            user_id,
            invite_date,
            start_time,
            end_time,
            timezone=zone_name,
            require_coverage=False,
        )

    created = now or utcnow()
    invite = Invite(
        sender_id=sender_id,
        receiver_id=receiver_id,
        availability_id=availability_id,
        date=invite_date,
        start_time=start_time,
        end_time=end_time,
        timezone=zone_name,
        status=InviteStatus.PENDING,
        reschedule_count=0,
        court_location=normalize_text(location, 'Location'),
        message=normalize_text(message, 'Message'),
        expires_at=_expiry_from(created),
        created_at=created,
    )
    db.add(invite)
    _commit(db)

    logger.info(
        'invite %s sent by user %s to user %s for %s %s-%s',
        invite.id,
        sender_id,
        receiver_id,
        invite_date,
        start_time,
        end_time,
    )
    _notify(notifier, EventKind.INVITE_SENT, invite, sender_id, receiver_id)
    return invite


def respond_to_invite(
    db: Session,
    invite_id: int,
    actor_id: int,
    response: str,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Invite:
    try:
        outcome = RESPONSES[str(getattr(response, 'value', response)).strip().lower()]
    except KeyError as exc:
        raise ValidationError("Response must be 'accepted' or 'declined'.") from exc

    attempted = 'accept' if outcome == InviteStatus.ACCEPTED else 'decline'
    invite = _load_open(db, invite_id, attempted, actor_id)
    if not _may_respond(invite, actor_id):
        raise InvalidStateTransition(
            _status_value(invite),
            attempted,
            message='The other player has to respond to the latest proposal.',
            actor_id=actor_id,
        )

    moment = now or utcnow()
    _reject_if_expired(db, invite, attempted, actor_id, moment, notifier)
    previous = _status_value(invite)

    if outcome == InviteStatus.DECLINED:
        invite.status = InviteStatus.DECLINED
        invite.responded_at = moment
        invite.clear_proposal()
        _commit(db)
        kind = EventKind.INVITE_DECLINED
    else:
        if invite.has_proposal:
            final = (invite.proposed_date, invite.proposed_start_time, invite.proposed_end_time)
        else:
            final = (invite.date, invite.start_time, invite.end_time)

        for user_id in invite.participant_ids:
            conflict_detector.check_slot(
                db,
                user_id,
                *final,
                timezone=invite.timezone,
                require_coverage=False,
                exclude_invite_id=invite.id,
            )

        try:
            invite.date, invite.start_time, invite.end_time = final
            invite.clear_proposal()
            invite.status = InviteStatus.ACCEPTED
            invite.responded_at = moment
            conflict_detector.claim_slots(
                db,
                invite.participant_ids,
                *final,
                timezone=invite.timezone,
                invite_id=invite.id,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        kind = EventKind.INVITE_ACCEPTED

    logger.info('invite %s %s -> %s by user %s', invite.id, previous, _status_value(invite), actor_id)
    _notify(notifier, kind, invite, actor_id, invite.counterpart_of(actor_id))
    return invite


def propose_reschedule(
    db: Session,
    invite_id: int,
    actor_id: int,
    slot_date: date | str,
    start: time | str,
    end: time | str,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Invite:
    attempted = 'reschedule'
    invite = _load_open(db, invite_id, attempted, actor_id)

    moment = now or utcnow()
    _reject_if_expired(db, invite, attempted, actor_id, moment, notifier)

    limit = config.MAX_RESCHEDULE_ATTEMPTS
    if invite.reschedule_count >= limit:
        raise RescheduleLimitExceeded(limit)

    proposed_date, start_time, end_time = validate_slot(slot_date, start, end)
    for user_id in invite.participant_ids:
        conflict_detector.check_slot(
            db,
            user_id,
            proposed_date,
            start_time,
            end_time,
            timezone=invite.timezone,
            require_coverage=False,
            exclude_invite_id=invite.id,
        )

    invite.proposed_date = proposed_date
    invite.proposed_start_time = start_time
    invite.proposed_end_time = end_time
    invite.proposed_by_id = actor_id
    invite.proposed_at = moment
    invite.reschedule_count += 1
    invite.status = InviteStatus.RESCHEDULED
    invite.expires_at = _expiry_from(moment)
    _commit(db)

    logger.info(
        'invite %s rescheduled by user %s to %s %s-%s (%d/%d)',
        invite.id,
        actor_id,
        proposed_date,
        start_time,
        end_time,
        invite.reschedule_count,
        limit,
    )
    _notify(
        notifier,
        EventKind.INVITE_RESCHEDULED,
        invite,
        actor_id,
        invite.counterpart_of(actor_id),
        proposed_date=proposed_date.isoformat(),
        proposed_start_time=start_time.isoformat(),
        proposed_end_time=end_time.isoformat(),
    )
    return invite


def cancel_invite(
    db: Session,
    invite_id: int,
    actor_id: int,
    reason: str | None = None,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Invite:
    attempted = 'cancel'
    invite = _load_open(db, invite_id, attempted, actor_id)
    if actor_id != invite.sender_id:
        raise InvalidStateTransition(
            _status_value(invite),
            attempted,
            message=f'Only the sender can cancel invite {invite.id}.',
            actor_id=actor_id,
        )

    previous = _status_value(invite)
    invite.status = InviteStatus.CANCELLED
    invite.cancellation_reason = normalize_text(reason, 'Reason')
    invite.cancelled_at = now or utcnow()
    invite.cancelled_by_id = actor_id
    invite.clear_proposal()
    _commit(db)

    logger.info('invite %s %s -> cancelled by user %s', invite.id, previous, actor_id)
    _notify(
        notifier,
        EventKind.INVITE_CANCELLED,
        invite,
        actor_id,
        invite.receiver_id,
        reason=invite.cancellation_reason,
    )
    return invite


def available_actions(invite: Invite, actor_id: int, now: datetime | None = None) -> list[str]:
    """Actions ``actor_id`` may take on the invite right now, in display order."""
    if not invite.is_open or actor_id not in invite.participant_ids:
        return []

    if _is_due(invite, now or utcnow()):
        return ['cancel'] if actor_id == invite.sender_id else []

    actions: list[str] = []
    if _may_respond(invite, actor_id):
        actions.extend(['accept', 'decline'])
    if invite.reschedule_count < config.MAX_RESCHEDULE_ATTEMPTS:
        actions.append('reschedule')
    if actor_id == invite.sender_id:
        actions.append('cancel')
    return actions


def expire_pending_invites(db: Session, now: datetime | None = None, *, notifier: Notifier | None = None) -> int:
    moment = now or utcnow()
    due = db.query(Invite).filter(
        Invite.status.in_(OPEN_INVITE_STATUSES),
        Invite.expires_at.isnot(None),
        Invite.expires_at <= moment,
    ).all()

    if not due:
        return 0

    for invite in due:
        _mark_expired(invite)
    _commit(db)

    logger.info('expired %d open invite(s)', len(due))
    for invite in due:
        _notify(notifier, EventKind.INVITE_EXPIRED, invite, None, invite.sender_id)
    return len(due)


def _for_user(db: Session, user_id: int):
    return db.query(Invite).filter(or_(Invite.sender_id == user_id, Invite.receiver_id == user_id))


def pending_invites_for_user(db: Session, user_id: int) -> list[Invite]:
    """Open invites that are waiting on ``user_id`` to respond."""
    invites = _for_user(db, user_id).filter(
        Invite.status.in_(OPEN_INVITE_STATUSES),
    ).order_by(Invite.date.asc(), Invite.start_time.asc()).all()
    return [invite for invite in invites if _may_respond(invite, user_id)]


def sent_invites_for_user(db: Session, user_id: int) -> list[Invite]:
    return db.query(Invite).filter(
        Invite.sender_id == user_id,
    ).order_by(Invite.created_at.desc(), Invite.id.desc()).all()


def accepted_invites_for_user(db: Session, user_id: int) -> list[Invite]:
    return _for_user(db, user_id).filter(
        Invite.status == InviteStatus.ACCEPTED,
    ).order_by(Invite.date.asc(), Invite.start_time.asc()).all()
