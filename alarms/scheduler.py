from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import RLock
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Set

from time_utils import local_timezone

from .errors import SchedulingError
from .models import AlarmRecord, FireEvent, OccurrenceKind
from .ports import NotificationPort
from .recurrence import next_occurrences

logger = logging.getLogger(__name__)


@dataclass
class Registration:
    handle: Hashable
    event: FireEvent


class AlarmScheduler:
    """Keeps notification registrations in sync with the alarm set.

    Both the notification subscription and the polling backstop feed
    ``on_fired``, which drops duplicates per ``(alarm_id, minute_key)`` and
    occurrences older than ``late_tolerance`` before anything reaches the
    trigger controller.
    """

    def __init__(
        self,
        notifier: NotificationPort,
        resolve_alarm: Callable[[str], Optional[AlarmRecord]],
        lock=None,
        late_tolerance: timedelta = timedelta(minutes=10),
        clock: Optional[Callable[[], datetime]] = None,
        on_missed: Optional[Callable[[AlarmRecord, FireEvent], None]] = None,
    ):
        self.notifier = notifier
        self.resolve_alarm = resolve_alarm
        self.late_tolerance = late_tolerance
        self.on_missed = on_missed
        self._clock = clock or (lambda: datetime.now(local_timezone()))
        self._lock = lock or RLock()
        self._registrations: Dict[str, List[Registration]] = {}
        self._unscheduled: Set[str] = set()
        self._consumed: Dict[str, str] = {}
        self._controller = None
        notifier.subscribe(self.on_fired)

    def attach(self, controller) -> None:
        self._controller = controller

    # registration management

    def schedule(self, alarm: AlarmRecord, now: datetime) -> List[FireEvent]:
        if not alarm.is_active:
            return []
        with self._lock:
            self._cancel_kind(alarm.id, OccurrenceKind.NORMAL)
            added: List[Registration] = []
            try:
                for when in next_occurrences(alarm, now):
                    event = FireEvent(alarm.id, when, OccurrenceKind.NORMAL)
                    added.append(Registration(self.notifier.schedule_at(when, event), event))
            except SchedulingError as exc:
                for reg in added:
                    self._safe_cancel(reg.handle)
                self._unscheduled.add(alarm.id)
                logger.warning("Alarm %s is not reliably scheduled: %s", alarm.id, exc)
                raise
            self._registrations.setdefault(alarm.id, []).extend(added)
            self._unscheduled.discard(alarm.id)
        logger.info(
            "Alarm %s scheduled for %s",
            alarm.id,
            ", ".join(r.event.scheduled_at.isoformat() for r in added),
        )
        return [r.event for r in added]

    def cancel(self, alarm_id: str) -> int:
        with self._lock:
            regs = self._registrations.pop(alarm_id, [])
            for reg in regs:
                self._safe_cancel(reg.handle)
            self._unscheduled.discard(alarm_id)
        if regs:
            logger.info("Cancelled %s registrations of alarm %s", len(regs), alarm_id)
        return len(regs)

    def reschedule(self, alarm: AlarmRecord, now: datetime) -> List[FireEvent]:
        with self._lock:
            self.cancel(alarm.id)
            return self.schedule(alarm, now)

    def schedule_snooze(self, alarm: AlarmRecord, from_time: datetime) -> FireEvent:
        at = from_time + timedelta(minutes=alarm.snooze_duration_minutes)
        event = self.schedule_once(alarm, at)
        logger.info("Alarm %s snoozed until %s", alarm.id, at.isoformat())
        return event

    def schedule_once(self, alarm: AlarmRecord, at: datetime) -> FireEvent:
        """Register a single snooze-kind occurrence, replacing any pending one."""
        event = FireEvent(alarm.id, at, OccurrenceKind.SNOOZE)
        with self._lock:
            self._cancel_kind(alarm.id, OccurrenceKind.SNOOZE)
            handle = self.notifier.schedule_at(at, event)
            self._registrations.setdefault(alarm.id, []).append(Registration(handle, event))
        return event

    def cancel_snooze(self, alarm_id: str) -> int:
        with self._lock:
            return self._cancel_kind(alarm_id, OccurrenceKind.SNOOZE)

    def ensure_scheduled(self, alarm: AlarmRecord, now: datetime) -> List[FireEvent]:
        """Re-arm the normal occurrences of the stored version of ``alarm``."""
        with self._lock:
            current = self.resolve_alarm(alarm.id)
            if current is None or not current.is_active:
                return []
            return self.schedule(current, now)

    def reconcile(self, alarms: Iterable[AlarmRecord], now: datetime) -> List[str]:
        """Bring registrations back in line with ``alarms``; returns ids that still failed."""
        failed: List[str] = []
        with self._lock:
            known = {a.id: a for a in alarms}
            for alarm_id in list(self._registrations):
                if alarm_id not in known:
                    self.cancel(alarm_id)
            for alarm in known.values():
                if not alarm.is_active:
                    self._cancel_kind(alarm.id, OccurrenceKind.NORMAL)
                    self._unscheduled.discard(alarm.id)
                    continue
                if alarm.id in self._unscheduled or not self.pending(alarm.id, OccurrenceKind.NORMAL):
                    try:
                        self.schedule(alarm, now)
                    except SchedulingError:
                        failed.append(alarm.id)
        return failed

    # fired events

    def on_fired(self, event: FireEvent, now: Optional[datetime] = None) -> bool:
        """Single consumer for fired events; returns True when an episode started."""
        now = now or self._clock()
        with self._lock:
            tracked = self._take_registration(event)
            if self._consumed.get(event.alarm_id) == event.minute_key:
                logger.debug("Duplicate fire for alarm %s at %s", event.alarm_id, event.minute_key)
                return False
            if not tracked:
                logger.debug("Ignoring untracked fire for alarm %s at %s", event.alarm_id, event.minute_key)
                return False
            self._consumed[event.alarm_id] = event.minute_key
            if now - event.scheduled_at > self.late_tolerance:
                self._handle_missed(event, now)
                return False
            alarm = self.resolve_alarm(event.alarm_id)
            if alarm is None:
                logger.info("Alarm %s fired after deletion, ignoring", event.alarm_id)
                return False
            if event.kind is OccurrenceKind.NORMAL and not alarm.is_active:
                logger.info("Alarm %s fired while inactive, ignoring", alarm.id)
                return False
            if self._controller is None:
                logger.warning("No trigger controller attached, alarm %s not rung", alarm.id)
                return False
            if self._controller.is_ringing(alarm.id):
                logger.info("Alarm %s is already ringing, ignoring %s fire", alarm.id, event.kind.value)
                return False
            return self._controller.on_fired(alarm, event, now)

    def poll(self, now: Optional[datetime] = None) -> int:
        """Backstop check: push every due registration through ``on_fired``."""
        now = now or self._clock()
        started = 0
        with self._lock:
            due = sorted(
                (reg for regs in self._registrations.values() for reg in regs if reg.event.scheduled_at <= now),
                key=lambda r: r.event.scheduled_at,
            )
            for reg in due:
                self._safe_cancel(reg.handle)
                if self.on_fired(reg.event, now):
                    started += 1
        return started

    # queries

    def pending(self, alarm_id: Optional[str] = None, kind: Optional[OccurrenceKind] = None) -> List[FireEvent]:
        with self._lock:
            if alarm_id is None:
                regs = [reg for items in self._registrations.values() for reg in items]
            else:
                regs = list(self._registrations.get(alarm_id, []))
        events = [r.event for r in regs if kind is None or r.event.kind is kind]
        return sorted(events, key=lambda e: e.scheduled_at)

    def is_scheduled(self, alarm_id: str) -> bool:
        return alarm_id not in self._unscheduled and bool(self.pending(alarm_id, OccurrenceKind.NORMAL))

    @property
    def unscheduled_ids(self) -> Set[str]:
        with self._lock:
            return set(self._unscheduled)

    # internals

    def _take_registration(self, event: FireEvent) -> bool:
        regs = self._registrations.get(event.alarm_id, [])
        for reg in regs:
            if reg.event == event:
                regs.remove(reg)
                if not regs:
                    self._registrations.pop(event.alarm_id, None)
                return True
        return False

    def _cancel_kind(self, alarm_id: str, kind: OccurrenceKind) -> int:
        regs = self._registrations.get(alarm_id, [])
        keep = [r for r in regs if r.event.kind is not kind]
        dropped = [r for r in regs if r.event.kind is kind]
        for reg in dropped:
            self._safe_cancel(reg.handle)
        if keep:
            self._registrations[alarm_id] = keep
        else:
            self._registrations.pop(alarm_id, None)
        return len(dropped)

    def _safe_cancel(self, handle: Hashable) -> None:
        try:
            self.notifier.cancel(handle)
        except SchedulingError as exc:
            logger.warning("Failed to cancel notification %s: %s", handle, exc)

    def _handle_missed(self, event: FireEvent, now: datetime) -> None:
        logger.warning(
            "Alarm %s missed its %s occurrence at %s (now %s)",
            event.alarm_id,
            event.kind.value,
            event.scheduled_at.isoformat(),
            now.isoformat(),
        )
        alarm = self.resolve_alarm(event.alarm_id)
        if alarm is None:
            return
        if self.on_missed:
            try:
                self.on_missed(alarm, event)
            except Exception:  # pragma: no cover - callback safety
                logger.error("on_missed callback failed", exc_info=True)
        if event.kind is OccurrenceKind.SNOOZE and self._controller is not None:
            self._controller.expire_snooze(event.alarm_id)
        alarm = self.resolve_alarm(event.alarm_id)
        if alarm is not None and alarm.is_active:
            try:
                self.schedule(alarm, now)
            except SchedulingError:
                # schedule() logged it and left the alarm in _unscheduled for reconcile
                return
