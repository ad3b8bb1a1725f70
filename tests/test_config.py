from datetime import timezone
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest

from config import load_config
from time_utils import _local_zone_name, format_tz_offset, local_timezone, resolve_timezone

ENV_NAMES = (
    "ALARM_STORAGE_PATH",
    "ALARM_SOUNDS_DIR",
    "ALARM_DEFAULT_SOUND",
    "ALARM_POLL_INTERVAL_SEC",
    "NOTIFY_CHECK_INTERVAL_MS",
    "ALARM_LATE_TOLERANCE_MIN",
    "ALARM_DEFAULT_SNOOZE_MIN",
    "ALARM_DEFAULT_MAX_SNOOZES",
    "ALARM_DEFAULT_VOLUME",
    "ALARM_POWER_UP_SEC",
    "AUDIO_OUTPUT_DEVICE_INDEX",
    "GRANTED_PERMISSIONS",
    "TIMEZONE",
    "DEBUG",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so the variables are removed again after the test, even
    # when load_dotenv put them into os.environ
    for name in ENV_NAMES:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults_without_env_file(tmp_path):
    cfg = load_config(tmp_path / "absent.env")
    assert cfg.alarms_path == Path("data/alarms.json")
    assert cfg.default_volume == 80
    assert cfg.default_snooze_min == 5
    assert cfg.default_max_snoozes == -1
    assert cfg.poll_interval_sec == 30.0
    assert cfg.output_device_index is None
    assert cfg.granted_permissions == frozenset({"notifications", "camera", "motion"})
    assert cfg.timezone_name is None
    assert cfg.log_level == "INFO"
    assert not cfg.debug


def test_values_from_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "ALARM_DEFAULT_VOLUME=60",
                "ALARM_DEFAULT_MAX_SNOOZES=3",
                "GRANTED_PERMISSIONS=Notifications, camera",
                "AUDIO_OUTPUT_DEVICE_INDEX=3",
                "TIMEZONE=Europe/Berlin",
                "DEBUG=true",
                "LOG_LEVEL=debug",
            ]
        ),
        encoding="utf-8",
    )
    cfg = load_config(env_file)
    assert cfg.default_volume == 60
    assert cfg.default_max_snoozes == 3
    assert cfg.granted_permissions == frozenset({"notifications", "camera"})
    assert cfg.output_device_index == 3
    assert cfg.timezone_name == "Europe/Berlin"
    assert cfg.debug
    assert cfg.log_level == "DEBUG"


def test_poll_interval_has_a_floor(tmp_path, monkeypatch):
    monkeypatch.setenv("ALARM_POLL_INTERVAL_SEC", "0.1")
    assert load_config(tmp_path / "absent.env").poll_interval_sec == 1.0


@pytest.mark.parametrize(
    "name, value",
    [
        ("ALARM_DEFAULT_VOLUME", "loud"),
        ("ALARM_DEFAULT_VOLUME", "150"),
        ("ALARM_DEFAULT_SNOOZE_MIN", "0"),
        ("ALARM_DEFAULT_MAX_SNOOZES", "-5"),
        ("ALARM_POWER_UP_SEC", "soon"),
    ],
)
def test_invalid_values_raise(tmp_path, monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        load_config(tmp_path / "absent.env")


def test_timezone_resolution():
    assert resolve_timezone(None) == resolve_timezone("Not/AZone")
    assert format_tz_offset(timezone.utc) == "+00:00"


def test_local_timezone_follows_tz_variable(monkeypatch):
    try:
        berlin = ZoneInfo("Europe/Berlin")
    except ZoneInfoNotFoundError:
        pytest.skip("tz database not installed")
    monkeypatch.setenv("TZ", ":Europe/Berlin")
    assert local_timezone() == berlin
    assert resolve_timezone(None) == berlin


def test_local_timezone_unknown_name_falls_back_to_offset(monkeypatch, caplog):
    monkeypatch.setenv("TZ", "Not/AZone")
    assert local_timezone().utcoffset(None) is not None
    assert "not found" in caplog.text


def test_local_zone_name_from_localtime_link(tmp_path, monkeypatch):
    monkeypatch.delenv("TZ", raising=False)
    target = tmp_path / "zoneinfo" / "Europe" / "Paris"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"TZif")
    link = tmp_path / "localtime"
    link.symlink_to(target)
    assert _local_zone_name(link) == "Europe/Paris"
    assert _local_zone_name(tmp_path / "missing") is None
