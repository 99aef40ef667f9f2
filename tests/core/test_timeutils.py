from datetime import date, datetime, time

import pytest

from matchbook.core.timeutils import (
    add_minutes,
    convert_range,
    convert_time,
    convert_time_with_offset,
    duration_minutes,
    ensure_on_grid,
    format_time_with_timezone,
    from_utc,
    iterate_increments,
    normalize_zone_name,
    overlaps,
    parse_date,
    parse_time,
    to_utc,
    utc_increments,
    validate_range,
)
from matchbook.core.validators import ensure_distinct_players, normalize_text, validate_slot
from matchbook.errors import ValidationError


def test_parse_time_accepts_hours_minutes_and_seconds() -> None:
    assert parse_time('09:00') == time(9, 0)
    assert parse_time('17:45:30') == time(17, 45, 30)
    assert parse_time(time(8, 15)) == time(8, 15)


@pytest.mark.parametrize('value', ['9:00', '24:00', '12:60', 'noon', '', '09:00Z'])
def test_parse_time_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ValidationError):
        parse_time(value)


def test_parse_date_rejects_garbage() -> None:
    assert parse_date('2024-03-10') == date(2024, 3, 10)

    with pytest.raises(ValidationError):
        parse_date('03/10/2024')
    with pytest.raises(ValidationError):
        parse_date('2024-02-30')


def test_validate_range_rejects_empty_and_inverted_ranges() -> None:
    assert validate_range('09:00', '10:30') == (time(9, 0), time(10, 30))

    with pytest.raises(ValidationError) as exception_info:
        validate_range('10:00', '10:00')
    assert exception_info.value.message == 'Start time 10:00 must be before end time 10:00.'

    with pytest.raises(ValidationError):
        validate_range('11:00', '10:00')


def test_ensure_on_grid_requires_fifteen_minute_boundaries() -> None:
    assert ensure_on_grid(time(9, 45)) == time(9, 45)

    with pytest.raises(ValidationError) as exception_info:
        ensure_on_grid(time(9, 10))
    assert exception_info.value.message == 'Times must be on 15-minute boundaries.'


@pytest.mark.parametrize(
    ('first', 'second', 'expected'),
    [
        ((time(9), time(10)), (time(9, 30), time(11)), True),
        ((time(9), time(10)), (time(10), time(11)), False),
        ((time(9), time(12)), (time(10), time(11)), True),
        ((time(9), time(10)), (time(11), time(12)), False),
    ],
)
def test_overlaps_is_symmetric_and_excludes_touching_ranges(first, second, expected) -> None:
    assert overlaps(*first, *second) is expected
    assert overlaps(*second, *first) is expected


def test_duration_and_add_minutes_stay_within_the_day() -> None:
    assert duration_minutes(time(9), time(10, 30)) == 90
    assert add_minutes(time(23, 0), 45) == time(23, 45)
    assert add_minutes(time(23, 30), 45) is None


def test_iterate_increments_rounds_up_to_next_boundary() -> None:
    assert iterate_increments(time(9, 2), time(9, 50)) == [time(9, 15), time(9, 30), time(9, 45)]
    assert iterate_increments(time(9), time(10)) == [time(9), time(9, 15), time(9, 30), time(9, 45)]


def test_convert_time_new_york_to_los_angeles() -> None:
    assert convert_time('09:00', 'America/New_York', 'America/Los_Angeles', '2024-03-10') == time(6, 0)


@pytest.mark.parametrize('value', [time(1, 0), time(6, 30), time(9, 0), time(14, 15), time(20, 45)])
def test_convert_time_round_trips_same_day(value: time) -> None:
    on_date = date(2024, 7, 1)
    there = convert_time(value, 'America/Chicago', 'America/Denver', on_date)

    assert convert_time(there, 'America/Denver', 'America/Chicago', on_date) == value


def test_convert_time_with_offset_reports_day_shift() -> None:
    converted, offset = convert_time_with_offset('22:00', 'America/Los_Angeles', 'America/New_York', '2024-07-01')

    assert converted == time(1, 0)
    assert offset == 1


def test_convert_range_relabels_date_when_whole_range_moves() -> None:
    assert convert_range('2024-07-01', '22:00', '23:00', 'America/New_York', 'UTC') == (
        date(2024, 7, 2),
        time(2, 0),
        time(3, 0),
    )


def test_convert_range_rejects_ranges_split_by_midnight() -> None:
    with pytest.raises(ValidationError) as exception_info:
        convert_range('2024-07-01', '19:00', '21:00', 'America/New_York', 'UTC')

    assert 'crosses midnight' in exception_info.value.message


def test_unknown_timezone_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        normalize_zone_name('Mars/Olympus_Mons')


def test_blank_timezone_falls_back_to_default() -> None:
    assert normalize_zone_name('  ') == 'America/New_York'


def test_format_time_with_timezone_uses_display_name() -> None:
    assert format_time_with_timezone('09:00', 'America/Los_Angeles') == '09:00 (Pacific Time)'
    assert format_time_with_timezone('09:00', 'Europe/Paris') == '09:00 (Europe/Paris)'
    assert format_time_with_timezone('09:00', 'America/Los_Angeles', show_name=False) == '09:00 (Los Angeles)'


def test_validate_slot_checks_range_and_grid() -> None:
    assert validate_slot('2024-03-10', '09:00', '10:00') == (date(2024, 3, 10), time(9), time(10))

    with pytest.raises(ValidationError):
        validate_slot('2024-03-10', '09:05', '10:00')


def test_normalize_text_trims_and_limits_length() -> None:
    assert normalize_text('  bring balls  ') == 'bring balls'
    assert normalize_text('   ') is None

    with pytest.raises(ValidationError) as exception_info:
        normalize_text('x' * 601, 'Message')
    assert exception_info.value.message == 'Message must be 600 characters or fewer.'


def test_players_must_differ() -> None:
    with pytest.raises(ValidationError):
        ensure_distinct_players(3, 3)


def test_utc_increments_walk_real_time() -> None:
    assert to_utc('2024-07-01', '09:00', 'America/New_York') == datetime(2024, 7, 1, 13, 0)
    assert from_utc(datetime(2024, 7, 1, 13, 0), 'America/Los_Angeles') == datetime(2024, 7, 1, 6, 0)

    new_york = utc_increments('2024-07-01', '09:00', '10:00', 'America/New_York')
    los_angeles = utc_increments('2024-07-01', '06:00', '07:00', 'America/Los_Angeles')

    assert new_york == los_angeles
    assert new_york == [datetime(2024, 7, 1, 13, minute) for minute in (0, 15, 30, 45)]


def test_utc_increments_skip_the_missing_dst_hour() -> None:
    increments = utc_increments('2024-03-10', '01:00', '04:00', 'America/New_York')

    assert len(increments) == 8
    assert increments[0] == datetime(2024, 3, 10, 6, 0)
    assert increments[-1] == datetime(2024, 3, 10, 7, 45)
