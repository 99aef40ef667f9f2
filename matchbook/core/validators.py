"""Shared input normalization for the scheduling services."""

from datetime import date, time

from matchbook.core import config
from matchbook.core.timeutils import ensure_on_grid, parse_date, validate_range
from matchbook.errors import ValidationError


def normalize_text(value: str | None, label: str = 'Notes') -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_MESSAGE_LENGTH:
        raise ValidationError(f'{label} must be {config.MAX_MESSAGE_LENGTH} characters or fewer.')

    return normalized


def validate_slot(slot_date: date | str, start: time | str, end: time | str) -> tuple[date, time, time]:
    """Parse a date plus range and require both ends on the increment grid."""
    parsed_date = parse_date(slot_date)
    start_time, end_time = validate_range(start, end)
    ensure_on_grid(start_time)
    ensure_on_grid(end_time)
    return parsed_date, start_time, end_time


def ensure_distinct_players(first_id: int, second_id: int) -> None:
    if first_id == second_id:
        raise ValidationError('You cannot schedule a match against yourself.')
