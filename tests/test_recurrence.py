from datetime import datetime, timedelta, timezone
from itertools import combinations
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest

from alarms.models import WEEKDAY_ORDER, AlarmRecord, Weekday
from alarms.recurrence import next_occurrence, next_occurrences

from conftest import MONDAY


def _alarm(hour=7, minute=0, days=(), **options) -> AlarmRecord:
    return AlarmRecord.create(hour, minute, id="al_test", repeat_days=days, **options)


def test_one_shot_later_today():
    now = MONDAY.replace(hour=6)
    assert next_occurrences(_alarm(), now) == [MONDAY.replace(hour=7)]


def test_one_shot_rolls_to_tomorrow_when_passed():
    now = MONDAY.replace(hour=8)
    assert next_occurrences(_alarm(), now) == [MONDAY.replace(hour=7) + timedelta(days=1)]


def test_one_shot_at_exact_instant_is_tomorrow():
    now = MONDAY.replace(hour=7)
    assert next_occurrences(_alarm(), now) == [MONDAY.replace(hour=7) + timedelta(days=1)]


def test_one_shot_properties_hold_across_the_day():
    for hour in (0, 6, 7, 12, 23):
        for minute in (0, 1, 59):
            alarm = _alarm(hour, minute)
            for offset_minutes in range(0, 24 * 60, 97):
                now = MONDAY + timedelta(minutes=offset_minutes, seconds=30)
                result = next_occurrences(alarm, now)
                assert len(result) == 1
                fire = result[0]
                assert fire > now
                assert fire - now <= timedelta(hours=24)
                assert (fire.hour, fire.minute) == (hour, minute)


def test_repeating_scenario_after_todays_slot():
    now = MONDAY.replace(hour=8)
    alarm = _alarm(days=["Mon", "Wed", "Fri"])
    assert next_occurrences(alarm, now) == [
        MONDAY.replace(hour=7) + timedelta(days=2),
        MONDAY.replace(hour=7) + timedelta(days=4),
        MONDAY.replace(hour=7) + timedelta(days=7),
    ]


def test_repeating_includes_today_when_slot_ahead():
    now = MONDAY.replace(hour=6)
    alarm = _alarm(days=["Mon", "Wed"])
    assert next_occurrences(alarm, now)[0] == MONDAY.replace(hour=7)


def test_repeating_properties_for_day_subsets():
    now = MONDAY.replace(hour=7, minute=30) + timedelta(days=3)
    for size in (1, 2, 5, 7):
        for days in combinations(WEEKDAY_ORDER, size):
            result = next_occurrences(_alarm(days=days), now)
            assert len(result) == len(days)
            assert result == sorted(result)
            for fire in result:
                assert fire > now
                assert fire - now <= timedelta(days=7)
                assert Weekday.of(fire) in days
                assert (fire.hour, fire.minute) == (7, 0)


def test_week_boundary_saturday_night_to_sunday():
    saturday_night = MONDAY.replace(hour=23, minute=30) + timedelta(days=5)
    alarm = _alarm(0, 15, days=["Sun"])
    assert next_occurrences(alarm, saturday_night) == [saturday_night.replace(hour=0, minute=15) + timedelta(days=1)]


def test_skip_next_moves_repeating_slot_one_week():
    now = MONDAY.replace(hour=6)
    skipped = MONDAY.replace(hour=7)
    alarm = _alarm(days=["Mon", "Tue"], skip_next_at=skipped)
    assert next_occurrences(alarm, now) == [skipped + timedelta(days=1), skipped + timedelta(days=7)]


def test_skip_next_moves_one_shot_one_day():
    now = MONDAY.replace(hour=6)
    alarm = _alarm(skip_next_at=MONDAY.replace(hour=7))
    assert next_occurrences(alarm, now) == [MONDAY.replace(hour=7) + timedelta(days=1)]


def test_calculator_is_deterministic_and_keeps_timezone():
    now = MONDAY.replace(hour=9)
    alarm = _alarm(days=["Thu", "Sun"])
    first = next_occurrences(alarm, now)
    assert first == next_occurrences(alarm, now)
    assert all(fire.tzinfo is now.tzinfo for fire in first)


def test_next_occurrence_none_for_inactive_alarm():
    assert next_occurrence(_alarm(is_active=False), MONDAY) is None
    assert next_occurrence(_alarm(), MONDAY) == MONDAY.replace(hour=7)


def test_wall_clock_slot_survives_dst_change():
    try:
        berlin = ZoneInfo("Europe/Berlin")
    except ZoneInfoNotFoundError:
        pytest.skip("tz database not installed")
    saturday = datetime(2026, 10, 24, 12, 0, tzinfo=berlin)
    fire = next_occurrence(_alarm(days=["Mon"]), saturday)
    assert fire == datetime(2026, 10, 26, 7, 0, tzinfo=berlin)
    assert fire.utcoffset() == timedelta(hours=1)
    assert saturday.utcoffset() == timedelta(hours=2)
    assert fire.astimezone(timezone.utc).hour == 6
