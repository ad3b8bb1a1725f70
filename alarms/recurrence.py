"""Pure occurrence math: alarm record + "now" -> future fire instants.

Nothing here reads the clock. Timestamps inherit ``now.tzinfo`` so the
result is in the same local wall-clock frame the alarm was declared in.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Optional

from .models import AlarmRecord

WEEK = timedelta(days=7)
DAY = timedelta(days=1)


def _slot(alarm: AlarmRecord, on: date, now: datetime) -> datetime:
    return datetime.combine(on, time(alarm.hour, alarm.minute), tzinfo=now.tzinfo)


def next_occurrences(alarm: AlarmRecord, now: datetime) -> List[datetime]:
    """Return the ordered future fire instants of ``alarm`` strictly after ``now``.

    One-shot alarms yield a single instant (today or tomorrow). Repeating
    alarms yield one instant per weekday in ``repeat_days``.
    """
    today = now.date()
    if not alarm.repeat_days:
        candidate = _slot(alarm, today, now)
        if candidate <= now:
            candidate = _slot(alarm, today + DAY, now)
        if alarm.skip_next_at is not None and candidate == alarm.skip_next_at:
            candidate = _slot(alarm, candidate.date() + DAY, now)
        return [candidate]

    found = set()
    for day in alarm.repeat_days:
        delta = (day.index - today.weekday()) % 7
        candidate = _slot(alarm, today + timedelta(days=delta), now)
        if candidate <= now:
            candidate = _slot(alarm, candidate.date() + WEEK, now)
        if alarm.skip_next_at is not None and candidate == alarm.skip_next_at:
            candidate = _slot(alarm, candidate.date() + WEEK, now)
        found.add(candidate)
    return sorted(found)


def next_occurrence(alarm: AlarmRecord, now: datetime) -> Optional[datetime]:
    if not alarm.is_active:
        return None
    occurrences = next_occurrences(alarm, now)
    return occurrences[0] if occurrences else None
