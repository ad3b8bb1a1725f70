import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Optional

from dotenv import load_dotenv


def _get_env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip() in {"1", "true", "True", "yes", "YES", "y"}


def _get_env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _get_env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _get_env_set(name: str, default: str) -> FrozenSet[str]:
    val = os.getenv(name, default)
    return frozenset(part.strip().lower() for part in val.split(",") if part.strip())


@dataclass
class Config:
    alarms_path: Path
    sounds_dir: Path
    default_sound: str
    poll_interval_sec: float
    notify_check_interval_ms: int
    late_tolerance_min: int
    default_snooze_min: int
    default_max_snoozes: int
    default_volume: int
    power_up_sec: float
    output_device_index: Optional[int]
    granted_permissions: FrozenSet[str]
    timezone_name: Optional[str]
    debug: bool
    log_level: str


def load_config(env_path: Optional[Path] = None) -> Config:
    if env_path is None:
        env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    output_device_env = os.getenv("AUDIO_OUTPUT_DEVICE_INDEX")
    default_snooze_min = _get_env_int("ALARM_DEFAULT_SNOOZE_MIN", 5)
    if default_snooze_min < 1:
        raise ValueError("ALARM_DEFAULT_SNOOZE_MIN must be at least 1")
    default_max_snoozes = _get_env_int("ALARM_DEFAULT_MAX_SNOOZES", -1)
    if default_max_snoozes < -1:
        raise ValueError("ALARM_DEFAULT_MAX_SNOOZES must be -1 (unlimited) or non-negative")
    default_volume = _get_env_int("ALARM_DEFAULT_VOLUME", 80)
    if not 0 <= default_volume <= 100:
        raise ValueError("ALARM_DEFAULT_VOLUME must be within 0..100")

    return Config(
        alarms_path=Path(os.getenv("ALARM_STORAGE_PATH", "data/alarms.json")),
        sounds_dir=Path(os.getenv("ALARM_SOUNDS_DIR", "data/sounds")),
        default_sound=os.getenv("ALARM_DEFAULT_SOUND", "default"),
        poll_interval_sec=max(1.0, _get_env_float("ALARM_POLL_INTERVAL_SEC", 30.0)),
        notify_check_interval_ms=_get_env_int("NOTIFY_CHECK_INTERVAL_MS", 800),
        late_tolerance_min=_get_env_int("ALARM_LATE_TOLERANCE_MIN", 10),
        default_snooze_min=default_snooze_min,
        default_max_snoozes=default_max_snoozes,
        default_volume=default_volume,
        power_up_sec=_get_env_float("ALARM_POWER_UP_SEC", 0.0),
        output_device_index=int(output_device_env) if output_device_env else None,
        granted_permissions=_get_env_set("GRANTED_PERMISSIONS", "notifications,camera,motion"),
        timezone_name=os.getenv("TIMEZONE") or None,
        debug=_get_env_bool("DEBUG", False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def setup_logging(log_level: str = "INFO", logs_dir: Path = Path("logs")) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    log_path = logs_dir / "wake_force.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[file_handler, console_handler],
    )
