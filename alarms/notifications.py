from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Event, Lock, Thread
from typing import Callable, Dict, List, Optional

from .errors import SchedulingError
from .models import FireEvent

logger = logging.getLogger(__name__)


@dataclass
class PendingNotification:
    handle: int
    fire_at: datetime
    tag: FireEvent


class LocalNotificationCenter:
    """In-process stand-in for the platform notification service.

    Keeps pending wake-ups in memory and delivers them from a daemon thread
    once their instant has passed. ``permission_granted=False`` makes every
    registration fail, the way a revoked notification permission does.
    """

    def __init__(
        self,
        check_interval: float = 0.8,
        clock: Optional[Callable[[], datetime]] = None,
        permission_granted: bool = True,
    ):
        self.check_interval = max(0.2, check_interval)
        self.permission_granted = permission_granted
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._pending: Dict[int, PendingNotification] = {}
        self._subscribers: List[Callable[[FireEvent], None]] = []
        self._ids = itertools.count(1)
        self._lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    def schedule_at(self, when: datetime, tag: FireEvent) -> int:
        if not self.permission_granted:
            raise SchedulingError("Notification permission not granted")
        with self._lock:
            handle = next(self._ids)
            self._pending[handle] = PendingNotification(handle=handle, fire_at=when, tag=tag)
        logger.debug("Notification %s registered for %s (%s)", handle, when.isoformat(), tag.kind.value)
        return handle

    def cancel(self, handle: int) -> None:
        with self._lock:
            self._pending.pop(handle, None)

    def subscribe(self, callback: Callable[[FireEvent], None]) -> None:
        self._subscribers.append(callback)

    def pending(self) -> List[PendingNotification]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda p: p.fire_at)

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name="notification-center", daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
        self._thread = None

    def deliver_due(self, now: Optional[datetime] = None) -> int:
        """Deliver every notification due at ``now``; returns how many fired."""
        now = now or self._clock()
        with self._lock:
            due = [p for p in self._pending.values() if p.fire_at <= now]
            for item in due:
                del self._pending[item.handle]
        for item in sorted(due, key=lambda p: p.fire_at):
            logger.info("Notification %s fired for alarm %s", item.handle, item.tag.alarm_id)
            for callback in list(self._subscribers):
                try:
                    callback(item.tag)
                except Exception:  # pragma: no cover - subscriber safety
                    logger.error("Notification subscriber failed", exc_info=True)
        return len(due)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.deliver_due()
            self._stop_event.wait(self.check_interval)
