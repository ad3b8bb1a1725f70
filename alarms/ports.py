"""Collaborator interfaces the alarm engine depends on."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Hashable, List, Protocol, Sequence

from .models import AlarmRecord, FireEvent


class NotificationPort(Protocol):
    def schedule_at(self, when: datetime, tag: FireEvent) -> Hashable:
        """Register a wake-up at ``when``; raises SchedulingError on failure."""

    def cancel(self, handle: Hashable) -> None:
        ...

    def subscribe(self, callback: Callable[[FireEvent], None]) -> None:
        ...


class AudioWakePort(Protocol):
    def start(self, track_ref: str, volume: int, loop: bool = True) -> None:
        ...

    def stop(self) -> None:
        ...


class MissionGatePort(Protocol):
    def begin(self, set_id: str, missions: Sequence[str]) -> None:
        ...

    def is_satisfied(self, set_id: str) -> bool:
        """Raises MissionGateError when progress cannot be evaluated."""

    def complete(self, set_id: str, kind: str) -> bool:
        ...

    def remaining(self, set_id: str) -> List[str]:
        ...

    def end(self, set_id: str) -> None:
        ...


class AlarmStorePort(Protocol):
    def load_all(self) -> List[AlarmRecord]:
        ...

    def save_all(self, alarms: Sequence[AlarmRecord]) -> None:
        ...
