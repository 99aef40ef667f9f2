from datetime import date

import pytest
from pydantic import ValidationError

from matchbook.services.recurrence import (
    RecurrencePattern,
    RecurrenceRule,
    decode_rule,
    describe_rule,
    encode_rule,
    generate_recurring_dates,
)


def test_non_recurring_rule_yields_only_start() -> None:
    assert generate_recurring_dates(date(2024, 3, 10), RecurrenceRule()) == [date(2024, 3, 10)]


def test_daily_rule_stops_before_end_date() -> None:
    rule = RecurrenceRule(pattern='daily', interval=2, end_date=date(2024, 3, 17))

    assert generate_recurring_dates(date(2024, 3, 10), rule) == [
        date(2024, 3, 10),
        date(2024, 3, 12),
        date(2024, 3, 14),
        date(2024, 3, 16),
    ]


def test_weekly_rule_with_days_emits_each_listed_weekday() -> None:
    rule = RecurrenceRule(pattern='weekly', days_of_week=[2, 0], end_date=date(2024, 3, 20))

    # 2024-03-05 is a Tuesday, so that week's Monday is skipped.
    assert generate_recurring_dates(date(2024, 3, 5), rule) == [
        date(2024, 3, 6),
        date(2024, 3, 11),
        date(2024, 3, 13),
        date(2024, 3, 18),
    ]


def test_monthly_rule_keeps_month_end_anchor() -> None:
    rule = RecurrenceRule(pattern='monthly', end_date=date(2024, 5, 1))

    assert generate_recurring_dates(date(2024, 1, 31), rule) == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_open_ended_rule_is_capped() -> None:
    rule = RecurrenceRule(pattern=RecurrencePattern.DAILY)

    assert len(generate_recurring_dates(date(2024, 1, 1), rule, max_occurrences=10)) == 10


def test_rule_rejects_out_of_range_values() -> None:
    with pytest.raises(ValidationError):
        RecurrenceRule(pattern='weekly', interval=0)
    with pytest.raises(ValidationError):
        RecurrenceRule(pattern='weekly', days_of_week=[7])


def test_encoded_rule_decodes_and_describes() -> None:
    rule = RecurrenceRule(pattern='weekly', interval=2, days_of_week=[0, 2], end_date=date(2024, 6, 1))

    decoded = decode_rule(encode_rule(rule))

    assert decoded == rule
    assert describe_rule(decoded) == 'Repeats every 2 weeks on Mon, Wed until 2024-06-01'
    assert describe_rule(RecurrenceRule(pattern='daily')) == 'Repeats daily'
    assert decode_rule('not json') is None
