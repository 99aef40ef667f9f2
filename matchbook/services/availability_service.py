"""Availability store and slot decomposition.

Windows are declared per player and date. Before anything is bookable they are
flattened into effective coverage (overlapping windows merged, blocked windows
cut out) and decomposed into whole bookable units.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from matchbook.core import config
from matchbook.core.timeutils import (
    convert_time_with_offset,
    from_utc,
    normalize_zone_name,
    parse_date,
    utc_increments,
)
from matchbook.core.validators import normalize_text, validate_slot
from matchbook.errors import InvalidStateTransition, ValidationError
from matchbook.models.availability import AvailabilityWindow, Visibility
from matchbook.services.recurrence import RecurrenceRule, encode_rule, generate_recurring_dates

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    'date',
    'start_time',
    'end_time',
    'is_available',
    'is_blocked',
    'timezone',
    'visibility',
    'notes',
}

TakenCheck = Callable[[date, time, time, str], bool]
RelationshipCheck = Callable[[int, int], bool]


@dataclass(frozen=True)
class CoverageSegment:
    window_id: int | None
    owner_id: int
    date: date
    start_time: time
    end_time: time
    timezone: str
    notes: str | None = None


@dataclass(frozen=True)
class BookableUnit:
    window_id: int | None
    owner_id: int
    date: date
    start_time: time
    end_time: time
    timezone: str
    notes: str | None = None


@dataclass(frozen=True)
class DisplayUnit:
    """A bookable unit re-expressed in a viewer's zone.

    ``end_day_offset`` is 1 when the unit ends exactly at or after the
    viewer's midnight, which a bare time of day cannot express.
    """
    unit: BookableUnit
    date: date
    start_time: time
    end_time: time
    timezone: str
    end_day_offset: int = 0


def _window_state(window: AvailabilityWindow) -> str:
    return 'available' if window.is_open else 'blocked'


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def get_window(db: Session, window_id: int) -> AvailabilityWindow | None:
    return db.get(AvailabilityWindow, window_id)


def create_window(
    db: Session,
    owner_id: int,
    window_date: date | str,
    start: time | str,
    end: time | str,
    *,
    is_available: bool = True,
    is_blocked: bool = False,
    timezone: str | None = None,
    visibility: Visibility | str = Visibility.PRIVATE,
    notes: str | None = None,
    recurrence: RecurrenceRule | None = None,
) -> list[AvailabilityWindow]:
    first_date, start_time, end_time = validate_slot(window_date, start, end)
    zone_name = normalize_zone_name(timezone)
    note = normalize_text(notes)

    try:
        visibility = Visibility(visibility)
    except ValueError as exc:
        raise ValidationError(f'Unknown visibility {visibility!r}.') from exc

    dates = [first_date]
    encoded_rule = None
    if recurrence is not None:
        dates = generate_recurring_dates(first_date, recurrence)
        encoded_rule = encode_rule(recurrence)

    windows = [
        AvailabilityWindow(
            owner_id=owner_id,
            date=occurrence,
            start_time=start_time,
            end_time=end_time,
            is_available=is_available,
            is_blocked=is_blocked,
            timezone=zone_name,
            visibility=visibility,
            notes=note,
            recurrence_rule=encoded_rule,
        )
        for occurrence in dates
    ]

    db.add_all(windows)
    _commit(db)

    logger.info(
        'user %s declared %d availability window(s) starting %s %s-%s',
        owner_id,
        len(windows),
        first_date,
        start_time,
        end_time,
    )
    return windows


def _owned_window(db: Session, window_id: int, owner_id: int, attempted: str) -> AvailabilityWindow:
    window = get_window(db, window_id)
    if window is None:
        raise InvalidStateTransition(None, attempted, actor_id=owner_id)

    if window.owner_id != owner_id:
        raise InvalidStateTransition(
            _window_state(window),
            attempted,
            message='Only the owner can change this availability.',
            actor_id=owner_id,
        )
    return window


def update_window(db: Session, window_id: int, owner_id: int, **changes) -> AvailabilityWindow:
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f'Cannot edit availability fields: {", ".join(sorted(unknown))}.')

    window = _owned_window(db, window_id, owner_id, 'update availability')

    window_date, start_time, end_time = validate_slot(
        changes.get('date', window.date),
        changes.get('start_time', window.start_time),
        changes.get('end_time', window.end_time),
    )
    window.date = window_date
    window.start_time = start_time
    window.end_time = end_time

    if 'timezone' in changes:
        window.timezone = normalize_zone_name(changes['timezone'])
    if 'notes' in changes:
        window.notes = normalize_text(changes['notes'])
    if 'visibility' in changes:
        try:
            window.visibility = Visibility(changes['visibility'])
        except ValueError as exc:
            raise ValidationError(f'Unknown visibility {changes["visibility"]!r}.') from exc
    for flag in ('is_available', 'is_blocked'):
        if flag in changes:
            setattr(window, flag, bool(changes[flag]))

    _commit(db)
    logger.info('user %s updated availability window %s', owner_id, window_id)
    return window


def delete_window(db: Session, window_id: int, owner_id: int) -> None:
    window = _owned_window(db, window_id, owner_id, 'delete availability')
    db.delete(window)
    _commit(db)
    logger.info('user %s deleted availability window %s', owner_id, window_id)


def list_availability(
    db: Session,
    owner_id: int,
    start_date: date | str,
    end_date: date | str,
    *,
    viewer_id: int | None = None,
    can_view_private: RelationshipCheck | None = None,
) -> list[AvailabilityWindow]:
    """Open windows for ``owner_id`` in the inclusive date range, filtered for the viewer."""
    range_start = parse_date(start_date)
    range_end = parse_date(end_date)
    if range_start > range_end:
        raise ValidationError('Start date must not be after end date.')

    query = db.query(AvailabilityWindow).filter(
        AvailabilityWindow.owner_id == owner_id,
        AvailabilityWindow.is_available.is_(True),
        AvailabilityWindow.is_blocked.is_(False),
        AvailabilityWindow.date >= range_start,
        AvailabilityWindow.date <= range_end,
    )

    if viewer_id is not None and viewer_id != owner_id:
        if can_view_private is None or not can_view_private(owner_id, viewer_id):
            query = query.filter(AvailabilityWindow.visibility == Visibility.PUBLIC)

    return query.order_by(AvailabilityWindow.date.asc(), AvailabilityWindow.start_time.asc()).all()


def list_blocked_windows(db: Session, owner_id: int, start_date: date, end_date: date) -> list[AvailabilityWindow]:
    return db.query(AvailabilityWindow).filter(
        AvailabilityWindow.owner_id == owner_id,
        AvailabilityWindow.date >= start_date,
        AvailabilityWindow.date <= end_date,
        (AvailabilityWindow.is_blocked.is_(True)) | (AvailabilityWindow.is_available.is_(False)),
    ).all()


def _window_order(window: AvailabilityWindow) -> tuple:
    return window.date, window.start_time, window.end_time


def _window_instants(window: AvailabilityWindow) -> list[datetime]:
    return utc_increments(window.date, window.start_time, window.end_time, window.timezone)


def covered_instants(windows: Iterable[AvailabilityWindow]) -> dict[datetime, AvailabilityWindow]:
    """UTC grid instants inside an open window and outside every blocked one.

    Each instant maps to the earliest open window covering it. Working on
    instants lets windows declared in different zones merge and cut each other.
    """
    windows = list(windows)
    blocked = {instant for window in windows if not window.is_open for instant in _window_instants(window)}

    covered: dict[datetime, AvailabilityWindow] = {}
    for window in sorted((item for item in windows if item.is_open), key=_window_order):
        for instant in _window_instants(window):
            if instant not in blocked:
                covered.setdefault(instant, window)
    return covered


def flatten_coverage(windows: Iterable[AvailabilityWindow], zone: str | None = None) -> list[CoverageSegment]:
    """Merge overlapping or touching open windows and cut out blocked ones.

    Segments are expressed in ``zone``, defaulting to the zone of the window
    that covers the earliest instant.
    """
    covered = covered_instants(windows)
    if not covered:
        return []

    zone_name = normalize_zone_name(zone or covered[min(covered)].timezone)
    step = timedelta(minutes=config.SLOT_INCREMENT_MINUTES)
    segments: list[CoverageSegment] = []

    for instant in sorted(covered):
        local_start = from_utc(instant, zone_name)
        local_end = from_utc(instant + step, zone_name)
        # Increments ending at midnight or inside a repeated DST hour have no single-date form.
        if local_end.date() != local_start.date() or local_end.time() <= local_start.time():
            continue

        previous = segments[-1] if segments else None
        if previous is not None and previous.date == local_start.date() and previous.end_time == local_start.time():
            segments[-1] = replace(previous, end_time=local_end.time())
            continue

        window = covered[instant]
        segments.append(
            CoverageSegment(
                window_id=window.id,
                owner_id=window.owner_id,
                date=local_start.date(),
                start_time=local_start.time(),
                end_time=local_end.time(),
                timezone=zone_name,
                notes=window.notes,
            )
        )

    return segments


def decompose(window: AvailabilityWindow | CoverageSegment, unit_minutes: int | None = None) -> list[BookableUnit]:
    """Split ``[start, end)`` into consecutive whole units; a trailing partial unit is dropped."""
    step = timedelta(minutes=unit_minutes or config.BOOKABLE_UNIT_MINUTES)
    parent_id = window.window_id if isinstance(window, CoverageSegment) else window.id

    current = datetime.combine(window.date, window.start_time)
    limit = datetime.combine(window.date, window.end_time)
    units: list[BookableUnit] = []

    while current + step <= limit:
        units.append(
            BookableUnit(
                window_id=parent_id,
                owner_id=window.owner_id,
                date=window.date,
                start_time=current.time(),
                end_time=(current + step).time(),
                timezone=window.timezone,
                notes=window.notes,
            )
        )
        current += step

    return units


def coverage_for(db: Session, owner_id: int, start_date: date, end_date: date, **visibility) -> list[CoverageSegment]:
    open_windows = list_availability(db, owner_id, start_date, end_date, **visibility)
    blocked = list_blocked_windows(db, owner_id, parse_date(start_date), parse_date(end_date))
    return flatten_coverage([*open_windows, *blocked])


def coverage_instants_around(db: Session, owner_id: int, on_date: date) -> dict[datetime, AvailabilityWindow]:
    """Covered UTC instants from every window within a day of ``on_date``, private ones included."""
    first = on_date - timedelta(days=1)
    last = on_date + timedelta(days=1)
    open_windows = list_availability(db, owner_id, first, last)
    blocked = list_blocked_windows(db, owner_id, first, last)
    return covered_instants([*open_windows, *blocked])


def available_units(
    db: Session,
    owner_id: int,
    start_date: date | str,
    end_date: date | str,
    is_taken: TakenCheck,
    *,
    viewer_id: int | None = None,
    can_view_private: RelationshipCheck | None = None,
    unit_minutes: int | None = None,
) -> list[BookableUnit]:
    segments = coverage_for(
        db,
        owner_id,
        start_date,
        end_date,
        viewer_id=viewer_id,
        can_view_private=can_view_private,
    )

    units = [
        unit
        for segment in segments
        for unit in decompose(segment, unit_minutes)
        if not is_taken(unit.date, unit.start_time, unit.end_time, unit.timezone)
    ]
    return sorted(units, key=lambda unit: (unit.date, unit.start_time))


def display_units(units: Iterable[BookableUnit], viewer_zone: str) -> list[DisplayUnit]:
    zone_name = normalize_zone_name(viewer_zone)
    displayed: list[DisplayUnit] = []

    for unit in units:
        start_time, start_offset = convert_time_with_offset(unit.start_time, unit.timezone, zone_name, unit.date)
        end_time, end_offset = convert_time_with_offset(unit.end_time, unit.timezone, zone_name, unit.date)
        displayed.append(
            DisplayUnit(
                unit=unit,
                date=unit.date + timedelta(days=start_offset),
                start_time=start_time,
                end_time=end_time,
                timezone=zone_name,
                end_day_offset=end_offset - start_offset,
            )
        )

    return displayed
