import pytest

from alarms.errors import ValidationError
from alarms.models import AlarmRecord, FireEvent, OccurrenceKind, Weekday, parse_time

from conftest import MONDAY


@pytest.mark.parametrize(
    "options",
    [
        {"hour": 24},
        {"minute": 60},
        {"hour": -1},
        {"volume": 101},
        {"snooze_duration_minutes": 0},
        {"max_snoozes": -2},
        {"mission_count": -1},
        {"selected_missions": ["juggling"]},
        {"wake_up_check_type": "dance"},
    ],
)
def test_validate_rejects_bad_records(options):
    hour = options.pop("hour", 7)
    minute = options.pop("minute", 0)
    with pytest.raises(ValidationError):
        AlarmRecord.create(hour, minute, **options)


def test_snooze_count_cannot_exceed_budget():
    with pytest.raises(ValidationError):
        AlarmRecord.create(7, 0, max_snoozes=1, current_snooze_count=2)


def test_from_dict_fills_defaults():
    alarm = AlarmRecord.from_dict({"id": "al_1", "time": "06:45"})
    assert (alarm.hour, alarm.minute) == (6, 45)
    assert alarm.is_active
    assert alarm.repeat_days == frozenset()
    assert alarm.snooze_enabled
    assert alarm.snooze_duration_minutes == 5
    assert alarm.max_snoozes == -1
    assert alarm.volume == 80
    assert alarm.sound_name == "default"
    assert not alarm.mission_enabled


def test_from_dict_ignores_unknown_fields_and_dedupes_days():
    alarm = AlarmRecord.from_dict(
        {"id": "al_2", "time": "07:00", "repeat_days": ["Mon", "Mon", "fri"], "wallpaper": "sunrise"}
    )
    assert alarm.repeat_days == frozenset({Weekday.MON, Weekday.FRI})


def test_from_dict_requires_id():
    with pytest.raises(ValidationError):
        AlarmRecord.from_dict({"time": "07:00"})


def test_to_dict_orders_days_and_drops_transient_count():
    alarm = AlarmRecord.create(7, 5, id="al_3", repeat_days=["Sat", "Sun", "Wed"], current_snooze_count=2)
    data = alarm.to_dict()
    assert data["time"] == "07:05"
    assert data["repeat_days"] == ["Sun", "Wed", "Sat"]
    assert "current_snooze_count" not in data
    assert AlarmRecord.from_dict(data) == alarm


def test_with_changes_validates_and_keeps_id():
    alarm = AlarmRecord.create(7, 0)
    moved = alarm.with_changes(hour=8, repeat_days=["Tue"])
    assert moved.id == alarm.id
    assert moved.repeat_days == frozenset({Weekday.TUE})
    with pytest.raises(ValidationError):
        alarm.with_changes(id="other")
    with pytest.raises(ValidationError):
        alarm.with_changes(minute=75)


def test_snooze_budget_helpers():
    limited = AlarmRecord.create(7, 0, max_snoozes=2, current_snooze_count=1)
    assert limited.can_snooze()
    assert limited.snoozes_left == 1
    exhausted = limited.with_changes(current_snooze_count=2)
    assert not exhausted.can_snooze()
    assert not AlarmRecord.create(7, 0, snooze_enabled=False).can_snooze()
    assert AlarmRecord.create(7, 0).snoozes_left is None


def test_weekday_parsing():
    assert Weekday.parse("monday") is Weekday.MON
    assert Weekday.parse("Sun") is Weekday.SUN
    assert Weekday.parse(0) is Weekday.MON
    assert Weekday.of(MONDAY) is Weekday.MON
    with pytest.raises(ValidationError):
        Weekday.parse("someday")


def test_parse_time_and_minute_key():
    assert parse_time("7:05") == (7, 5)
    with pytest.raises(ValidationError):
        parse_time("seven")
    event = FireEvent("al_1", MONDAY.replace(hour=7, second=42), OccurrenceKind.SNOOZE)
    assert event.minute_key == "2025-01-06 07:00"
