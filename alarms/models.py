from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Tuple

from .errors import ValidationError

MISSION_TYPES = ("math", "memory", "shake", "photo", "barcode")

DEFAULT_SOUND = "default"
DEFAULT_VOLUME = 80
DEFAULT_SNOOZE_MINUTES = 5
UNLIMITED_SNOOZES = -1


class Weekday(str, Enum):
    SUN = "Sun"
    MON = "Mon"
    TUE = "Tue"
    WED = "Wed"
    THU = "Thu"
    FRI = "Fri"
    SAT = "Sat"

    @property
    def index(self) -> int:
        """Index compatible with ``datetime.weekday()`` (Mon=0 .. Sun=6)."""
        return _WEEKDAY_INDEX[self]

    @classmethod
    def parse(cls, value) -> "Weekday":
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            for day, idx in _WEEKDAY_INDEX.items():
                if idx == value:
                    return day
            raise ValidationError(f"Weekday index out of range: {value}")
        key = str(value).strip()[:3].lower()
        for day in cls:
            if day.value.lower() == key:
                return day
        raise ValidationError(f"Unknown weekday: {value!r}")

    @classmethod
    def of(cls, dt: datetime) -> "Weekday":
        return cls.parse(dt.weekday())


_WEEKDAY_INDEX = {
    Weekday.MON: 0,
    Weekday.TUE: 1,
    Weekday.WED: 2,
    Weekday.THU: 3,
    Weekday.FRI: 4,
    Weekday.SAT: 5,
    Weekday.SUN: 6,
}

WEEKDAY_ORDER = tuple(Weekday)


class OccurrenceKind(str, Enum):
    NORMAL = "normal"
    SNOOZE = "snooze"


def new_alarm_id() -> str:
    return f"al_{uuid.uuid4().hex[:8]}"


def parse_time(value: str) -> Tuple[int, int]:
    """Parse ``HH:MM`` into ``(hour, minute)``."""
    parts = str(value).strip().split(":")
    if len(parts) != 2:
        raise ValidationError(f"Time must be HH:MM, got {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValidationError(f"Time must be HH:MM, got {value!r}") from exc
    return hour, minute


def parse_days(values: Optional[Iterable]) -> frozenset:
    return frozenset(Weekday.parse(v) for v in (values or ()))


@dataclass
class AlarmRecord:
    id: str
    hour: int
    minute: int
    label: str = ""
    is_active: bool = True
    repeat_days: frozenset = frozenset()
    sound_name: str = DEFAULT_SOUND
    volume: int = DEFAULT_VOLUME
    snooze_enabled: bool = True
    snooze_duration_minutes: int = DEFAULT_SNOOZE_MINUTES
    max_snoozes: int = UNLIMITED_SNOOZES
    mission_enabled: bool = False
    mission_count: int = 0
    selected_missions: Tuple[str, ...] = ()
    wake_up_check_enabled: bool = False
    wake_up_check_type: str = "math"
    skip_next_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    current_snooze_count: int = field(default=0, compare=False)

    @classmethod
    def create(cls, hour: int, minute: int, **options) -> "AlarmRecord":
        """Build a new, validated record with a fresh id."""
        options.setdefault("id", new_alarm_id())
        options["repeat_days"] = parse_days(options.get("repeat_days"))
        options["selected_missions"] = tuple(options.get("selected_missions") or ())
        record = cls(hour=hour, minute=minute, **options)
        record.validate()
        return record

    @property
    def time(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    @property
    def is_repeating(self) -> bool:
        return bool(self.repeat_days)

    @property
    def unlimited_snoozes(self) -> bool:
        return self.max_snoozes == UNLIMITED_SNOOZES

    @property
    def snoozes_left(self) -> Optional[int]:
        if self.unlimited_snoozes:
            return None
        return max(0, self.max_snoozes - self.current_snooze_count)

    def can_snooze(self) -> bool:
        if not self.snooze_enabled:
            return False
        return self.unlimited_snoozes or self.current_snooze_count < self.max_snoozes

    def validate(self) -> None:
        if not self.id:
            raise ValidationError("Alarm id is required")
        if not 0 <= self.hour <= 23:
            raise ValidationError(f"Hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValidationError(f"Minute out of range: {self.minute}")
        if not 0 <= self.volume <= 100:
            raise ValidationError(f"Volume must be 0..100, got {self.volume}")
        if self.snooze_duration_minutes < 1:
            raise ValidationError("Snooze duration must be at least one minute")
        if self.max_snoozes < UNLIMITED_SNOOZES:
            raise ValidationError(f"max_snoozes must be -1 or non-negative, got {self.max_snoozes}")
        if self.mission_count < 0:
            raise ValidationError("mission_count cannot be negative")
        unknown = [m for m in self.selected_missions if m not in MISSION_TYPES]
        if unknown:
            raise ValidationError(f"Unknown mission types: {', '.join(unknown)}")
        if self.wake_up_check_type not in MISSION_TYPES:
            raise ValidationError(f"Unknown wake-up check type: {self.wake_up_check_type}")
        if not self.unlimited_snoozes and self.current_snooze_count > self.max_snoozes:
            raise ValidationError("current_snooze_count exceeds max_snoozes")
        for day in self.repeat_days:
            if not isinstance(day, Weekday):
                raise ValidationError(f"repeat_days must hold Weekday values, got {day!r}")

    def with_changes(self, **changes) -> "AlarmRecord":
        if "repeat_days" in changes:
            changes["repeat_days"] = parse_days(changes["repeat_days"])
        if "selected_missions" in changes:
            changes["selected_missions"] = tuple(changes["selected_missions"] or ())
        if "id" in changes and changes["id"] != self.id:
            raise ValidationError("Alarm id is immutable")
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("current_snooze_count")
        data.pop("hour")
        data.pop("minute")
        data["time"] = self.time
        data["repeat_days"] = [d.value for d in WEEKDAY_ORDER if d in self.repeat_days]
        data["selected_missions"] = list(self.selected_missions)
        data["skip_next_at"] = self.skip_next_at.isoformat() if self.skip_next_at else None
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AlarmRecord":
        """Normalize a stored payload, filling every optional field with its default.

        Unknown keys are ignored so older builds can read newer files.
        """
        if not data.get("id"):
            raise ValidationError("Alarm payload missing id")
        if "time" in data:
            hour, minute = parse_time(data["time"])
        else:
            hour, minute = int(data["hour"]), int(data["minute"])
        max_snoozes = data.get("max_snoozes")
        record = cls(
            id=str(data["id"]),
            hour=hour,
            minute=minute,
            label=str(data.get("label") or ""),
            is_active=bool(data.get("is_active", True)),
            repeat_days=parse_days(data.get("repeat_days")),
            sound_name=str(data.get("sound_name") or DEFAULT_SOUND),
            volume=int(data.get("volume", DEFAULT_VOLUME)),
            snooze_enabled=bool(data.get("snooze_enabled", True)),
            snooze_duration_minutes=int(data.get("snooze_duration_minutes") or DEFAULT_SNOOZE_MINUTES),
            max_snoozes=UNLIMITED_SNOOZES if max_snoozes is None else int(max_snoozes),
            mission_enabled=bool(data.get("mission_enabled", False)),
            mission_count=int(data.get("mission_count") or 0),
            selected_missions=tuple(data.get("selected_missions") or ()),
            wake_up_check_enabled=bool(data.get("wake_up_check_enabled", False)),
            wake_up_check_type=str(data.get("wake_up_check_type") or "math"),
            skip_next_at=_parse_dt(data.get("skip_next_at")),
            created_at=_parse_dt(data.get("created_at")),
        )
        record.validate()
        return record


@dataclass(frozen=True)
class FireEvent:
    alarm_id: str
    scheduled_at: datetime
    kind: OccurrenceKind = OccurrenceKind.NORMAL

    @property
    def minute_key(self) -> str:
        return self.scheduled_at.strftime("%Y-%m-%d %H:%M")


def _parse_dt(raw) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError as exc:
        raise ValidationError(f"Invalid timestamp: {raw!r}") from exc
