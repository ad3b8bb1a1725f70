from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .models import MISSION_TYPES, WEEKDAY_ORDER, Weekday

DAY_WORDS = {
    "sun": Weekday.SUN,
    "sunday": Weekday.SUN,
    "mon": Weekday.MON,
    "monday": Weekday.MON,
    "tue": Weekday.TUE,
    "tuesday": Weekday.TUE,
    "wed": Weekday.WED,
    "wednesday": Weekday.WED,
    "thu": Weekday.THU,
    "thursday": Weekday.THU,
    "fri": Weekday.FRI,
    "friday": Weekday.FRI,
    "sat": Weekday.SAT,
    "saturday": Weekday.SAT,
}

DAY_GROUPS = {
    "daily": tuple(WEEKDAY_ORDER),
    "everyday": tuple(WEEKDAY_ORDER),
    "weekdays": (Weekday.MON, Weekday.TUE, Weekday.WED, Weekday.THU, Weekday.FRI),
    "weekends": (Weekday.SAT, Weekday.SUN),
}

INDEX_ACTIONS = {
    "delete": "remove",
    "remove": "remove",
    "rm": "remove",
    "on": "enable",
    "enable": "enable",
    "off": "disable",
    "disable": "disable",
    "skip": "skip",
    "copy": "duplicate",
    "duplicate": "duplicate",
    "test": "test",
}

SIMPLE_ACTIONS = {
    "list": "list",
    "ls": "list",
    "next": "next",
    "snooze": "snooze",
    "stop": "stop",
    "dismiss": "stop",
    "resume": "resume",
    "help": "help",
}


@dataclass
class AlarmCommand:
    action: str
    hour: Optional[int] = None
    minute: Optional[int] = None
    delta_minutes: Optional[int] = None
    repeat_days: List[Weekday] = field(default_factory=list)
    index: Optional[int] = None
    mission: Optional[str] = None
    label: Optional[str] = None
    error: Optional[str] = None
    raw_text: str = ""


def parse_command(text: str) -> Optional[AlarmCommand]:
    """Parse one console line into a structured command; None for blank input."""

    cleaned = text.strip()
    if not cleaned:
        return None
    lower = cleaned.lower()
    verb, _, rest = lower.partition(" ")
    rest = rest.strip()

    if verb in SIMPLE_ACTIONS:
        return AlarmCommand(action=SIMPLE_ACTIONS[verb], raw_text=cleaned)

    if verb in INDEX_ACTIONS:
        index = _extract_index(rest)
        if index is None:
            return AlarmCommand(
                action="unknown", error=f"Which alarm? Try '{verb} 1'.", raw_text=cleaned
            )
        return AlarmCommand(action=INDEX_ACTIONS[verb], index=index, raw_text=cleaned)

    if verb == "done":
        mission = rest.split(" ")[0] if rest else ""
        if mission not in MISSION_TYPES:
            return AlarmCommand(
                action="unknown",
                error=f"Unknown mission. Choose one of: {', '.join(MISSION_TYPES)}.",
                raw_text=cleaned,
            )
        return AlarmCommand(action="mission", mission=mission, raw_text=cleaned)

    if verb == "add":
        return _parse_add(cleaned[len(verb) :].strip(), cleaned)

    return AlarmCommand(action="unknown", error="Unknown command, type 'help'.", raw_text=cleaned)


def _parse_add(body: str, raw: str) -> AlarmCommand:
    lower = body.lower()
    rel_minutes = _extract_relative_minutes(lower)
    if rel_minutes:
        label = _strip_label(body, re.search(r"in\s+\d+\s*(?:min\w*|h\w*)", lower))
        return AlarmCommand(action="add", delta_minutes=rel_minutes, label=label, raw_text=raw)

    parsed = _extract_time(lower)
    if not parsed:
        return AlarmCommand(action="unknown", error="Could not understand the time, e.g. 'add 7:30'.", raw_text=raw)
    (hour, minute), match = parsed
    remainder = body[match.end() :].strip()
    days, remainder = _extract_days(remainder)
    return AlarmCommand(
        action="add",
        hour=hour,
        minute=minute,
        repeat_days=days,
        label=remainder or None,
        raw_text=raw,
    )


def _extract_index(text: str) -> Optional[int]:
    number_match = re.search(r"(\d+)", text)
    if number_match:
        return int(number_match.group(1))
    return None


def _extract_relative_minutes(text: str) -> Optional[int]:
    minute_match = re.search(r"in\s+(\d+)\s*min", text)
    hour_match = re.search(r"in\s+(\d+)\s*h", text)

    minutes = None
    if minute_match:
        minutes = int(minute_match.group(1))
    elif hour_match:
        hours = int(hour_match.group(1))
        minutes = hours * 60

    return minutes


def _extract_time(lower: str) -> Optional[Tuple[Tuple[int, int], "re.Match"]]:
    match = re.match(r"(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm)?(?=\s|$)", lower)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    hour = _adjust_hour(hour, match.group(3))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return (hour, minute), match


def _extract_days(text: str) -> Tuple[List[Weekday], str]:
    """Consume leading day tokens ("mon,wed", "weekdays", "daily") from ``text``."""
    days: List[Weekday] = []
    tokens = text.split()
    consumed = 0
    for token in tokens:
        parts = [p for p in token.lower().split(",") if p]
        found = []
        for part in parts:
            if part in DAY_GROUPS:
                found.extend(DAY_GROUPS[part])
            elif part in DAY_WORDS:
                found.append(DAY_WORDS[part])
            else:
                found = []
                break
        if not found:
            break
        days.extend(d for d in found if d not in days)
        consumed += 1
    return days, " ".join(tokens[consumed:])


def _strip_label(body: str, match) -> Optional[str]:
    if not match:
        return None
    label = (body[: match.start()] + body[match.end() :]).strip()
    return label or None


def _adjust_hour(hour: int, qualifier: Optional[str]) -> int:
    if qualifier == "am":
        return 0 if hour == 12 else hour
    if qualifier == "pm":
        return hour if hour == 12 else hour + 12
    return hour
