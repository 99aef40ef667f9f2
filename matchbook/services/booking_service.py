"""Booking negotiation between a requester and an opponent.

    pending --accept--------------------> confirmed --cancel--> cancelled
    pending --decline-------------------> declined
    pending --propose--> pending+proposal --accept_proposed--> confirmed
                                          --decline----------> declined
    pending --cancel (requester)--------> cancelled

Every operation names its actor explicitly. Pending and confirmed bookings hold
slot claims for both players; a terminal transition releases them in the same
transaction, which is what makes the range bookable again. The opponent gets at
most MAX_RESCHEDULE_ATTEMPTS counter-offers per booking.
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchbook.core import config
from matchbook.core.timeutils import normalize_zone_name
from matchbook.core.validators import ensure_distinct_players, normalize_text, validate_slot
from matchbook.errors import (
    ConflictReason,
    InvalidStateTransition,
    RescheduleLimitExceeded,
    SchedulingError,
    ValidationError,
)
from matchbook.models.availability import utcnow
from matchbook.models.booking import Booking, BookingStatus
from matchbook.models.user import User
from matchbook.services import conflict_detector
from matchbook.services.availability_service import get_window, list_availability
from matchbook.services.notifications import EventKind, Notifier, SchedulingEvent, emit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotRequest:
    date: date | str
    start_time: time | str
    end_time: time | str
    availability_id: int | None = None


@dataclass(frozen=True)
class SlotOutcome:
    """Result of one slot in a multi-slot request: exactly one of booking/error is set."""
    date: date | str
    start_time: time | str
    end_time: time | str
    booking: Booking | None = None
    error: SchedulingError | None = None

    @property
    def ok(self) -> bool:
        return self.booking is not None


def _status_value(booking: Booking) -> str:
    return BookingStatus(booking.status).value


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def _notify(notifier, kind: EventKind, booking: Booking, actor_id: int, recipient_id: int) -> None:
    emit(
        notifier,
        SchedulingEvent(
            kind=kind,
            record_id=booking.id,
            actor_id=actor_id,
            recipient_id=recipient_id,
            payload={
                'date': booking.date.isoformat(),
                'start_time': booking.start_time.isoformat(),
                'end_time': booking.end_time.isoformat(),
                'timezone': booking.timezone,
                'status': _status_value(booking),
            },
        ),
    )


def get_booking(db: Session, booking_id: int) -> Booking | None:
    return db.get(Booking, booking_id)


def _load(db: Session, booking_id: int, attempted: str, actor_id: int) -> Booking:
    booking = get_booking(db, booking_id)
    if booking is None:
        raise InvalidStateTransition(None, attempted, actor_id=actor_id)
    return booking


def _require_status(booking: Booking, attempted: str, actor_id: int, *allowed: BookingStatus) -> None:
    if booking.status not in allowed:
        raise InvalidStateTransition(_status_value(booking), attempted, actor_id=actor_id)


def _require_actor(booking: Booking, attempted: str, actor_id: int, expected_id: int, role: str) -> None:
    if actor_id != expected_id:
        raise InvalidStateTransition(
            _status_value(booking),
            attempted,
            message=f'Only the {role} can {attempted} booking {booking.id}.',
            actor_id=actor_id,
        )


def _log_transition(booking: Booking, previous: str, actor_id: int) -> None:
    logger.info('booking %s %s -> %s by user %s', booking.id, previous, _status_value(booking), actor_id)


def _request_zone(
    db: Session,
    opponent_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    timezone: str | None,
    availability_id: int | None,
) -> str:
    """Zone the requested wall-clock range is read in.

    An explicit zone wins, then the chosen window's zone, then the zone of an
    opponent window that covers the range as written, then the opponent's own.
    """
    if timezone and timezone.strip():
        return normalize_zone_name(timezone)

    if availability_id is not None:
        window = get_window(db, availability_id)
        if window is not None:
            return window.timezone

    windows = list_availability(db, opponent_id, booking_date, booking_date)
    for zone_name in dict.fromkeys(window.timezone for window in windows):
        if conflict_detector.is_covered(db, opponent_id, booking_date, start_time, end_time, timezone=zone_name):
            return zone_name

    opponent = db.get(User, opponent_id)
    return normalize_zone_name(opponent.timezone if opponent is not None else None)


def create_booking(
    db: Session,
    requester_id: int,
    opponent_id: int,
    slot_date: date | str,
    start: time | str,
    end: time | str,
    *,
    availability_id: int | None = None,
    location: str | None = None,
    message: str | None = None,
    timezone: str | None = None,
    notifier: Notifier | None = None,
) -> Booking:
    ensure_distinct_players(requester_id, opponent_id)
    booking_date, start_time, end_time = validate_slot(slot_date, start, end)
    zone_name = _request_zone(db, opponent_id, booking_date, start_time, end_time, timezone, availability_id)

    conflict_detector.check_slot(db, opponent_id, booking_date, start_time, end_time, timezone=zone_name)
    conflict_detector.check_slot(
        db,
        requester_id,
        booking_date,
        start_time,
        end_time,
        timezone=zone_name,
        require_coverage=False,
        taken_reason=ConflictReason.OPPONENT_UNAVAILABLE,
    )

    booking = Booking(
        requester_id=requester_id,
        opponent_id=opponent_id,
        availability_id=availability_id,
        date=booking_date,
        start_time=start_time,
        end_time=end_time,
        timezone=zone_name,
        status=BookingStatus.PENDING,
        proposal_count=0,
        court_location=normalize_text(location, 'Location'),
        message=normalize_text(message, 'Message'),
    )

    try:
        db.add(booking)
        db.flush()
        conflict_detector.claim_slots(
            db,
            booking.participant_ids,
            booking_date,
            start_time,
            end_time,
            timezone=zone_name,
            booking_id=booking.id,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        'booking %s created by user %s for opponent %s on %s %s-%s %s',
        booking.id,
        requester_id,
        opponent_id,
        booking_date,
        start_time,
        end_time,
        zone_name,
    )
    _notify(notifier, EventKind.BOOKING_REQUESTED, booking, requester_id, opponent_id)
    return booking


def create_bookings(
    db: Session,
    requester_id: int,
    opponent_id: int,
    slots: Iterable[SlotRequest],
    *,
    location: str | None = None,
    message: str | None = None,
    timezone: str | None = None,
    notifier: Notifier | None = None,
) -> list[SlotOutcome]:
    """Claim each slot independently; earlier successes stay committed when later slots fail."""
    requested = list(slots)
    if not requested:
        raise ValidationError('Select at least one time slot.')
    if len(requested) > config.MAX_BATCH_SLOTS:
        raise ValidationError(f'You can request at most {config.MAX_BATCH_SLOTS} slots at once.')

    outcomes: list[SlotOutcome] = []
    for slot in requested:
        try:
            booking = create_booking(
                db,
                requester_id,
                opponent_id,
                slot.date,
                slot.start_time,
                slot.end_time,
                availability_id=slot.availability_id,
                location=location,
                message=message,
                timezone=timezone,
                notifier=notifier,
            )
        except SchedulingError as exc:
            logger.info('multi-slot request by user %s: slot %s %s rejected (%s)', requester_id, slot.date, slot.start_time, exc.code)
            outcomes.append(SlotOutcome(slot.date, slot.start_time, slot.end_time, error=exc))
        else:
            outcomes.append(SlotOutcome(slot.date, slot.start_time, slot.end_time, booking=booking))

    return outcomes


def accept_booking(db: Session, booking_id: int, actor_id: int, *, notifier: Notifier | None = None) -> Booking:
    attempted = 'accept'
    booking = _load(db, booking_id, attempted, actor_id)
    _require_status(booking, attempted, actor_id, BookingStatus.PENDING)
    _require_actor(booking, attempted, actor_id, booking.opponent_id, 'opponent')
    if booking.has_proposal:
        raise InvalidStateTransition(
            _status_value(booking),
            attempted,
            message='A new time has been proposed; the requester must respond to it first.',
            actor_id=actor_id,
        )

    # The slot may have lost coverage since the request was made.
    conflict_detector.check_slot(
        db,
        booking.opponent_id,
        booking.date,
        booking.start_time,
        booking.end_time,
        timezone=booking.timezone,
        exclude_booking_id=booking.id,
    )

    previous = _status_value(booking)
    booking.status = BookingStatus.CONFIRMED
    booking.responded_at = utcnow()
    _commit(db)

    _log_transition(booking, previous, actor_id)
    _notify(notifier, EventKind.BOOKING_ACCEPTED, booking, actor_id, booking.requester_id)
    return booking


def decline_booking(db: Session, booking_id: int, actor_id: int, *, notifier: Notifier | None = None) -> Booking:
    attempted = 'decline'
    booking = _load(db, booking_id, attempted, actor_id)
    _require_status(booking, attempted, actor_id, BookingStatus.PENDING)

    # An outstanding counter-offer is the requester's to turn down.
    if booking.has_proposal:
        _require_actor(booking, attempted, actor_id, booking.requester_id, 'requester')
    else:
        _require_actor(booking, attempted, actor_id, booking.opponent_id, 'opponent')

    previous = _status_value(booking)
    booking.status = BookingStatus.DECLINED
    booking.responded_at = utcnow()
    booking.clear_proposal()
    conflict_detector.release_claims(db, booking_id=booking.id)
    _commit(db)

    _log_transition(booking, previous, actor_id)
    recipient = booking.opponent_id if actor_id == booking.requester_id else booking.requester_id
    _notify(notifier, EventKind.BOOKING_DECLINED, booking, actor_id, recipient)
    return booking


def cancel_booking(db: Session, booking_id: int, actor_id: int, *, notifier: Notifier | None = None) -> Booking:
    attempted = 'cancel'
    booking = _load(db, booking_id, attempted, actor_id)
    _require_status(booking, attempted, actor_id, BookingStatus.PENDING, BookingStatus.CONFIRMED)

    if actor_id not in booking.participant_ids:
        raise InvalidStateTransition(
            _status_value(booking),
            attempted,
            message=f'Only the players in booking {booking.id} can cancel it.',
            actor_id=actor_id,
        )
    if booking.status == BookingStatus.PENDING:
        _require_actor(booking, attempted, actor_id, booking.requester_id, 'requester')

    previous = _status_value(booking)
    booking.status = BookingStatus.CANCELLED
    booking.clear_proposal()
    conflict_detector.release_claims(db, booking_id=booking.id)
    _commit(db)

    _log_transition(booking, previous, actor_id)
    recipient = booking.opponent_id if actor_id == booking.requester_id else booking.requester_id
    _notify(notifier, EventKind.BOOKING_CANCELLED, booking, actor_id, recipient)
    return booking


def propose_new_time(
    db: Session,
    booking_id: int,
    actor_id: int,
    slot_date: date | str,
    start: time | str,
    end: time | str,
    *,
    notifier: Notifier | None = None,
) -> Booking:
    attempted = 'propose a new time for'
    booking = _load(db, booking_id, attempted, actor_id)
    _require_status(booking, attempted, actor_id, BookingStatus.PENDING)
    _require_actor(booking, attempted, actor_id, booking.opponent_id, 'opponent')

    limit = config.MAX_RESCHEDULE_ATTEMPTS
    if booking.proposal_count >= limit:
        raise RescheduleLimitExceeded(limit)

    # Proposed times are read in the booking's zone.
    proposed_date, start_time, end_time = validate_slot(slot_date, start, end)
    if (proposed_date, start_time, end_time) == (booking.date, booking.start_time, booking.end_time):
        raise ValidationError('The proposed time is the same as the current one.')

    conflict_detector.check_slot(
        db,
        actor_id,
        proposed_date,
        start_time,
        end_time,
        timezone=booking.timezone,
        exclude_booking_id=booking.id,
    )
    conflict_detector.check_slot(
        db,
        booking.requester_id,
        proposed_date,
        start_time,
        end_time,
        timezone=booking.timezone,
        require_coverage=False,
        taken_reason=ConflictReason.OPPONENT_UNAVAILABLE,
        exclude_booking_id=booking.id,
    )

    booking.proposed_date = proposed_date
    booking.proposed_start_time = start_time
    booking.proposed_end_time = end_time
    booking.proposed_by_id = actor_id
    booking.proposal_count += 1
    _commit(db)

    logger.info(
        'booking %s: user %s proposed %s %s-%s (%d/%d)',
        booking.id,
        actor_id,
        proposed_date,
        start_time,
        end_time,
        booking.proposal_count,
        limit,
    )
    _notify(notifier, EventKind.TIME_PROPOSED, booking, actor_id, booking.requester_id)
    return booking


def accept_proposed_time(db: Session, booking_id: int, actor_id: int, *, notifier: Notifier | None = None) -> Booking:
    attempted = 'accept the proposed time for'
    booking = _load(db, booking_id, attempted, actor_id)
    _require_status(booking, attempted, actor_id, BookingStatus.PENDING)
    _require_actor(booking, attempted, actor_id, booking.requester_id, 'requester')
    if not booking.has_proposal:
        raise InvalidStateTransition(
            _status_value(booking),
            attempted,
            message=f'Booking {booking.id} has no proposed time to accept.',
            actor_id=actor_id,
        )

    new_date = booking.proposed_date
    new_start = booking.proposed_start_time
    new_end = booking.proposed_end_time

    conflict_detector.check_slot(
        db,
        booking.opponent_id,
        new_date,
        new_start,
        new_end,
        timezone=booking.timezone,
        exclude_booking_id=booking.id,
    )
    conflict_detector.check_slot(
        db,
        booking.requester_id,
        new_date,
        new_start,
        new_end,
        timezone=booking.timezone,
        require_coverage=False,
        taken_reason=ConflictReason.OPPONENT_UNAVAILABLE,
        exclude_booking_id=booking.id,
    )

    previous = _status_value(booking)
    try:
        conflict_detector.release_claims(db, booking_id=booking.id)
        db.flush()
        booking.date = new_date
        booking.start_time = new_start
        booking.end_time = new_end
        booking.clear_proposal()
        booking.status = BookingStatus.CONFIRMED
        booking.responded_at = utcnow()
        conflict_detector.claim_slots(
            db,
            booking.participant_ids,
            new_date,
            new_start,
            new_end,
            timezone=booking.timezone,
            booking_id=booking.id,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    _log_transition(booking, previous, actor_id)
    _notify(notifier, EventKind.PROPOSED_TIME_ACCEPTED, booking, actor_id, booking.opponent_id)
    return booking


def list_bookings_for_user(
    db: Session,
    user_id: int,
    statuses: Iterable[BookingStatus] | None = None,
) -> list[Booking]:
    query = db.query(Booking).filter(or_(Booking.requester_id == user_id, Booking.opponent_id == user_id))
    if statuses is not None:
        query = query.filter(Booking.status.in_(list(statuses)))
    return query.order_by(Booking.date.asc(), Booking.start_time.asc()).all()


def pending_bookings_for_user(db: Session, user_id: int) -> list[Booking]:
    return list_bookings_for_user(db, user_id, statuses=[BookingStatus.PENDING])


def bookings_for_slot(db: Session, slot_date: date | str, start: time | str, end: time | str) -> list[Booking]:
    booking_date, start_time, end_time = validate_slot(slot_date, start, end)
    return db.query(Booking).filter(
        Booking.date == booking_date,
        Booking.start_time == start_time,
        Booking.end_time == end_time,
    ).order_by(Booking.id.asc()).all()
