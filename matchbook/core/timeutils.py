"""Timezone-aware wall-clock arithmetic shared by the scheduling services.

Availability and bookings store zone-less dates and times of day expressed in
the zone their record declares. Anything that compares records across players
(coverage, overlap, slot claims) first maps them onto naive UTC instants.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from matchbook.core import config
from matchbook.errors import ValidationError

_TIME_PATTERN = re.compile(r'^(\d{2}):(\d{2})(?::(\d{2}))?$')
_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

TIMEZONE_DISPLAY_NAMES = {
    'America/New_York': 'Eastern Time',
    'America/Detroit': 'Eastern Time',
    'America/Indiana/Indianapolis': 'Eastern Time',
    'America/Kentucky/Louisville': 'Eastern Time',
    'America/Chicago': 'Central Time',
    'America/Menominee': 'Central Time',
    'America/North_Dakota/Center': 'Central Time',
    'America/North_Dakota/New_Salem': 'Central Time',
    'America/Denver': 'Mountain Time',
    'America/Boise': 'Mountain Time',
    'America/Phoenix': 'Arizona Time',
    'America/Los_Angeles': 'Pacific Time',
    'America/Anchorage': 'Alaska Time',
    'Pacific/Honolulu': 'Hawaii Time',
    'UTC': 'UTC',
}


def parse_time(value: time | str) -> time:
    if isinstance(value, time):
        if value.tzinfo is not None:
            raise ValidationError('Times of day must not carry a timezone offset.')
        return value

    if not isinstance(value, str):
        raise ValidationError(f'Invalid time value: {value!r}.')

    match = _TIME_PATTERN.match(value)
    if not match:
        raise ValidationError(f'Invalid time {value!r}; expected HH:MM or HH:MM:SS.')

    hour, minute, second = (int(part) if part else 0 for part in match.groups())
    if hour > 23 or minute > 59 or second > 59:
        raise ValidationError(f'Invalid time {value!r}; out of range.')

    return time(hour, minute, second)


def parse_date(value: date | str) -> date:
    if isinstance(value, datetime):
        raise ValidationError('Expected a calendar date, not a timestamp.')
    if isinstance(value, date):
        return value

    if not isinstance(value, str) or not _DATE_PATTERN.match(value):
        raise ValidationError(f'Invalid date {value!r}; expected YYYY-MM-DD.')

    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f'Invalid date {value!r}.') from exc


def resolve_zone(name: str | None) -> ZoneInfo:
    zone_name = (name or '').strip() or config.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f'Unknown timezone {zone_name!r}.') from exc


def normalize_zone_name(name: str | None) -> str:
    return resolve_zone(name).key


def format_time(value: time) -> str:
    return value.strftime('%H:%M')


def ensure_on_grid(value: time, increment_minutes: int | None = None) -> time:
    increment = increment_minutes or config.SLOT_INCREMENT_MINUTES
    if value.minute % increment != 0 or value.second or value.microsecond:
        raise ValidationError(f'Times must be on {increment}-minute boundaries.')
    return value


def validate_range(start: time | str, end: time | str) -> tuple[time, time]:
    start_time = parse_time(start)
    end_time = parse_time(end)
    if start_time >= end_time:
        raise ValidationError(
            f'Start time {format_time(start_time)} must be before end time {format_time(end_time)}.'
        )
    return start_time, end_time


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    """Half-open overlap: ranges that only touch at a boundary do not overlap."""
    return start_a < end_b and start_b < end_a


def duration_minutes(start: time, end: time) -> int:
    delta = datetime.combine(date.min, end) - datetime.combine(date.min, start)
    return int(delta.total_seconds() // 60)


def add_minutes(value: time, minutes: int) -> time | None:
    """Shift a time of day, or return None when the result leaves the day."""
    shifted = datetime.combine(date.min, value) + timedelta(minutes=minutes)
    if shifted.date() != date.min:
        return None
    return shifted.time()


def iterate_increments(start: time, end: time, step_minutes: int | None = None) -> list[time]:
    step = step_minutes or config.SLOT_INCREMENT_MINUTES
    current = datetime.combine(date.min, start).replace(second=0, microsecond=0)

    if current.minute % step != 0:
        current += timedelta(minutes=step - (current.minute % step))

    limit = datetime.combine(date.min, end)
    starts: list[time] = []
    while current < limit and current.date() == date.min:
        starts.append(current.time())
        current += timedelta(minutes=step)

    return starts


def to_utc(on_date: date | str, value: time | str, zone: str | None) -> datetime:
    """Naive UTC instant of a wall-clock time on ``on_date`` in ``zone``."""
    local = datetime.combine(parse_date(on_date), parse_time(value), tzinfo=resolve_zone(zone))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def from_utc(instant: datetime, zone: str | None) -> datetime:
    """Naive wall-clock datetime in ``zone`` for a naive UTC instant."""
    return instant.replace(tzinfo=timezone.utc).astimezone(resolve_zone(zone)).replace(tzinfo=None)


def utc_span(on_date: date | str, start: time | str, end: time | str, zone: str | None) -> tuple[datetime, datetime]:
    return to_utc(on_date, start, zone), to_utc(on_date, end, zone)


def floor_to_grid(instant: datetime, step_minutes: int | None = None) -> datetime:
    step = step_minutes or config.SLOT_INCREMENT_MINUTES
    return instant.replace(minute=instant.minute - instant.minute % step, second=0, microsecond=0)


def utc_increments(
    on_date: date | str,
    start: time | str,
    end: time | str,
    zone: str | None,
    step_minutes: int | None = None,
) -> list[datetime]:
    """Grid instants in UTC covering ``[start, end)`` on ``on_date`` in ``zone``.

    Walking in UTC keeps the list strictly increasing across DST transitions.
    """
    step = timedelta(minutes=step_minutes or config.SLOT_INCREMENT_MINUTES)
    current, limit = utc_span(on_date, start, end, zone)
    current = floor_to_grid(current, step_minutes)

    instants: list[datetime] = []
    while current < limit:
        instants.append(current)
        current += step
    return instants


def convert_time_with_offset(
    value: time | str,
    from_zone: str,
    to_zone: str,
    on_date: date | str,
) -> tuple[time, int]:
    """Convert a wall-clock time and report how many days the date moved (-1, 0 or 1)."""
    source_time = parse_time(value)
    source_date = parse_date(on_date)
    source_zone = resolve_zone(from_zone)
    target_zone = resolve_zone(to_zone)

    if source_zone.key == target_zone.key:
        return source_time, 0

    source = datetime.combine(source_date, source_time, tzinfo=source_zone)
    converted = source.astimezone(target_zone)
    return converted.time(), (converted.date() - source_date).days


def convert_time(value: time | str, from_zone: str, to_zone: str, on_date: date | str) -> time:
    converted, _ = convert_time_with_offset(value, from_zone, to_zone, on_date)
    return converted


def convert_range(
    on_date: date | str,
    start: time | str,
    end: time | str,
    from_zone: str,
    to_zone: str,
) -> tuple[date, time, time]:
    """Convert a single-date range, relabeling the date when the whole range shifts days.

    A range whose converted end falls on a different day than its converted
    start cannot be expressed as one date plus two times and is rejected.
    """
    range_date = parse_date(on_date)
    start_time, end_time = validate_range(start, end)

    converted_start, start_offset = convert_time_with_offset(start_time, from_zone, to_zone, range_date)
    converted_end, end_offset = convert_time_with_offset(end_time, from_zone, to_zone, range_date)

    if start_offset != end_offset:
        raise ValidationError(
            f'{format_time(start_time)}-{format_time(end_time)} on {range_date.isoformat()} '
            f'crosses midnight in {to_zone}.'
        )

    return range_date + timedelta(days=start_offset), converted_start, converted_end


def timezone_display_name(zone: str) -> str:
    return TIMEZONE_DISPLAY_NAMES.get(zone, zone)


def format_time_with_timezone(value: time | str, zone: str, show_name: bool = True) -> str:
    label = format_time(parse_time(value))
    if show_name:
        return f'{label} ({timezone_display_name(zone)})'

    zone_code = zone.split('/')[-1].replace('_', ' ')
    return f'{label} ({zone_code})'
