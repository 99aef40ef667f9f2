"""Overlap and availability checks plus the atomic slot claim.

``is_booked``/``is_available`` are the read-side checks used to explain a
rejection. The guarantee itself lives in ``claim_slots``: claims are inserted
in the caller's transaction against a unique (user, UTC increment) key, so of
two concurrent claimants for an overlapping range exactly one commits.

Every range is read in the zone passed as ``timezone`` (the default zone when
omitted) and compared as UTC instants, so records declared in different zones
meet on real time rather than on wall-clock values.
"""

import logging
from datetime import date, time

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from matchbook.core.timeutils import floor_to_grid, utc_increments, utc_span
from matchbook.errors import ConflictError, ConflictReason
from matchbook.models.booking import ACTIVE_BOOKING_STATUSES, Booking
from matchbook.models.invite import Invite, InviteStatus
from matchbook.models.slot_claim import SlotClaim
from matchbook.services.availability_service import coverage_instants_around

logger = logging.getLogger(__name__)


def _claims_overlapping(db: Session, user_id: int, slot_date: date, start: time, end: time, timezone: str | None):
    start_utc, end_utc = utc_span(slot_date, start, end, timezone)
    return db.query(SlotClaim).filter(
        SlotClaim.user_id == user_id,
        SlotClaim.starts_at >= floor_to_grid(start_utc),
        SlotClaim.starts_at < end_utc,
    )


def overlapping_bookings(
    db: Session,
    user_id: int,
    slot_date: date,
    start: time,
    end: time,
    *,
    timezone: str | None = None,
    exclude_booking_id: int | None = None,
) -> list[Booking]:
    claims = _claims_overlapping(db, user_id, slot_date, start, end, timezone).subquery()
    query = db.query(Booking).join(claims, claims.c.booking_id == Booking.id).filter(
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query.distinct().order_by(Booking.id.asc()).all()


def overlapping_invites(
    db: Session,
    user_id: int,
    slot_date: date,
    start: time,
    end: time,
    *,
    timezone: str | None = None,
    exclude_invite_id: int | None = None,
) -> list[Invite]:
    claims = _claims_overlapping(db, user_id, slot_date, start, end, timezone).subquery()
    query = db.query(Invite).join(claims, claims.c.invite_id == Invite.id).filter(
        Invite.status == InviteStatus.ACCEPTED,
    )
    if exclude_invite_id is not None:
        query = query.filter(Invite.id != exclude_invite_id)
    return query.distinct().order_by(Invite.id.asc()).all()


def is_booked(
    db: Session,
    user_id: int,
    slot_date: date,
    start: time,
    end: time,
    *,
    timezone: str | None = None,
    exclude_booking_id: int | None = None,
    exclude_invite_id: int | None = None,
) -> bool:
    """True when a pending/confirmed booking or an accepted invite of the user overlaps the range."""
    query = _claims_overlapping(db, user_id, slot_date, start, end, timezone)
    if exclude_booking_id is not None:
        query = query.filter(or_(SlotClaim.booking_id.is_(None), SlotClaim.booking_id != exclude_booking_id))
    if exclude_invite_id is not None:
        query = query.filter(or_(SlotClaim.invite_id.is_(None), SlotClaim.invite_id != exclude_invite_id))
    return query.first() is not None


def is_covered(
    db: Session,
    user_id: int,
    slot_date: date,
    start: time,
    end: time,
    *,
    timezone: str | None = None,
) -> bool:
    required = utc_increments(slot_date, start, end, timezone)
    covered = coverage_instants_around(db, user_id, slot_date)
    return bool(required) and all(instant in covered for instant in required)


def is_available(
    db: Session,
    user_id: int,
    slot_date: date,
    start: time,
    end: time,
    *,
    timezone: str | None = None,
    exclude_booking_id: int | None = None,
    exclude_invite_id: int | None = None,
) -> bool:
    if not is_covered(db, user_id, slot_date, start, end, timezone=timezone):
        return False
    return not is_booked(
        db,
        user_id,
        slot_date,
        start,
        end,
        timezone=timezone,
        exclude_booking_id=exclude_booking_id,
        exclude_invite_id=exclude_invite_id,
    )


def check_slot(
    db: Session,
    user_id: int,
    slot_date: date,
    start: time,
    end: time,
    *,
    timezone: str | None = None,
    require_coverage: bool = True,
    taken_reason: ConflictReason = ConflictReason.SLOT_TAKEN,
    exclude_booking_id: int | None = None,
    exclude_invite_id: int | None = None,
) -> None:
    """Raise a ConflictError that says why the range cannot be claimed by ``user_id``."""
    if require_coverage and not is_covered(db, user_id, slot_date, start, end, timezone=timezone):
        raise ConflictError(ConflictReason.OUTSIDE_AVAILABILITY)

    if is_booked(
        db,
        user_id,
        slot_date,
        start,
        end,
        timezone=timezone,
        exclude_booking_id=exclude_booking_id,
        exclude_invite_id=exclude_invite_id,
    ):
        raise ConflictError(taken_reason)


def taken_checker(db: Session, user_id: int):
    def is_taken(slot_date: date, start: time, end: time, timezone: str | None = None) -> bool:
        return is_booked(db, user_id, slot_date, start, end, timezone=timezone)

    return is_taken


def claim_slots(
    db: Session,
    user_ids: tuple[int, ...],
    slot_date: date,
    start: time,
    end: time,
    *,
    timezone: str | None = None,
    booking_id: int | None = None,
    invite_id: int | None = None,
) -> None:
    """Insert claims for every increment of the range; roll back and raise on any clash."""
    claims = [
        SlotClaim(
            user_id=user_id,
            starts_at=instant,
            booking_id=booking_id,
            invite_id=invite_id,
        )
        for user_id in user_ids
        for instant in utc_increments(slot_date, start, end, timezone)
    ]
    db.add_all(claims)

    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        logger.info(
            'slot claim lost for users %s on %s %s-%s %s (booking %s, invite %s)',
            user_ids,
            slot_date,
            start,
            end,
            timezone,
            booking_id,
            invite_id,
        )
        raise ConflictError(ConflictReason.SLOT_TAKEN) from exc


def release_claims(db: Session, *, booking_id: int | None = None, invite_id: int | None = None) -> int:
    query = db.query(SlotClaim)
    if booking_id is not None:
        query = query.filter(SlotClaim.booking_id == booking_id)
    elif invite_id is not None:
        query = query.filter(SlotClaim.invite_id == invite_id)
    else:
        return 0
    return query.delete(synchronize_session=False)
