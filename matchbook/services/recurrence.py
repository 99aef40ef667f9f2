"""Recurring availability rules and the dates they expand to."""

import enum
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

DAY_NAMES = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']
DEFAULT_MAX_OCCURRENCES = 52


class RecurrencePattern(str, enum.Enum):
    NONE = 'none'
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'


class RecurrenceRule(BaseModel):
    pattern: RecurrencePattern = RecurrencePattern.NONE
    interval: int = Field(default=1, ge=1, le=12)
    end_date: date | None = None
    # 0 = Monday, matching date.weekday().
    days_of_week: list[int] | None = None

    @field_validator('days_of_week')
    @classmethod
    def validate_days_of_week(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if any(day < 0 or day > 6 for day in value):
            raise ValueError('Days of week must be between 0 (Monday) and 6 (Sunday).')
        return sorted(set(value)) or None


def generate_recurring_dates(
    start: date,
    rule: RecurrenceRule,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[date]:
    if rule.pattern == RecurrencePattern.NONE:
        return [start]

    end = rule.end_date or start + relativedelta(months=12)
    dates: list[date] = []

    if rule.pattern == RecurrencePattern.WEEKLY and rule.days_of_week:
        week_start = start - timedelta(days=start.weekday())
        while week_start < end and len(dates) < max_occurrences:
            for day in rule.days_of_week:
                candidate = week_start + timedelta(days=day)
                if candidate < start:
                    continue
                if candidate >= end or len(dates) >= max_occurrences:
                    break
                dates.append(candidate)
            week_start += timedelta(weeks=rule.interval)
        return dates

    step = 0
    current = start
    while current < end and len(dates) < max_occurrences:
        dates.append(current)
        step += rule.interval

        if rule.pattern == RecurrencePattern.DAILY:
            current = start + timedelta(days=step)
        elif rule.pattern == RecurrencePattern.WEEKLY:
            current = start + timedelta(weeks=step)
        else:
            # Offsets from the original start keep month-end dates from drifting.
            current = start + relativedelta(months=step)

    return dates


def encode_rule(rule: RecurrenceRule) -> str:
    return rule.model_dump_json(exclude_none=True)


def decode_rule(raw: str | None) -> RecurrenceRule | None:
    if not raw:
        return None
    try:
        return RecurrenceRule.model_validate_json(raw)
    except PydanticValidationError:
        return None


def describe_rule(rule: RecurrenceRule) -> str:
    if rule.pattern == RecurrencePattern.NONE:
        return 'Does not repeat'

    unit = {
        RecurrencePattern.DAILY: 'day',
        RecurrencePattern.WEEKLY: 'week',
        RecurrencePattern.MONTHLY: 'month',
    }[rule.pattern]

    if rule.interval == 1:
        text = rule.pattern.value
    else:
        text = f'every {rule.interval} {unit}s'

    if rule.pattern == RecurrencePattern.WEEKLY and rule.days_of_week:
        text += ' on ' + ', '.join(DAY_NAMES[day] for day in rule.days_of_week)

    if rule.end_date:
        text += f' until {rule.end_date.isoformat()}'

    return f'Repeats {text}'
