from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import datetime, timedelta
from threading import Event, RLock, Thread
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from time_utils import local_timezone

from .errors import SchedulingError, StorageError, ValidationError
from .models import AlarmRecord, FireEvent, OccurrenceKind, new_alarm_id
from .ports import AlarmStorePort, AudioWakePort, MissionGatePort, NotificationPort
from .recurrence import next_occurrence
from .scheduler import AlarmScheduler
from .trigger import Episode, TriggerController, TriggerResult, TriggerState

logger = logging.getLogger(__name__)


class AlarmManager:
    """Single writer for the alarm list.

    Every mutation and every fired event runs under one lock, so a user edit
    and a fire-driven snooze can never interleave.
    """

    def __init__(
        self,
        store: AlarmStorePort,
        notifier: NotificationPort,
        sound_player: AudioWakePort,
        mission_gate: MissionGatePort,
        poll_interval: float = 30.0,
        late_tolerance: timedelta = timedelta(minutes=10),
        defaults: Optional[Dict[str, object]] = None,
        on_alarm_triggered: Optional[Callable[[AlarmRecord], None]] = None,
        timezone=None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.sound_player = sound_player
        self.mission_gate = mission_gate
        self.poll_interval = max(1.0, poll_interval)
        self.defaults = dict(defaults or {})
        self.on_alarm_triggered = on_alarm_triggered
        self.tzinfo = timezone or local_timezone()
        self._clock = clock or (lambda: datetime.now(self.tzinfo))

        self._alarms: List[AlarmRecord] = []
        self._lock = RLock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

        self.scheduler = AlarmScheduler(
            notifier,
            self.get_alarm,
            lock=self._lock,
            late_tolerance=late_tolerance,
            clock=self._clock,
            on_missed=self._on_missed,
        )
        self.controller = TriggerController(
            self.scheduler,
            sound_player,
            mission_gate,
            rng=rng,
            on_started=self._on_episode_started,
        )

    def start(self) -> None:
        with self._lock:
            self._alarms = self.store.load_all()
            logger.info("Loaded %s alarms", len(self._alarms))
            self.resume()
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name="alarm-backstop", daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
        self._thread = None
        self.sound_player.stop()

    def resume(self, now: Optional[datetime] = None) -> List[str]:
        """Retry failed registrations and catch up on anything already due."""
        now = now or self._now()
        with self._lock:
            self._expire_skips(now)
            failed = self.scheduler.reconcile(self._alarms, now)
            self.scheduler.poll(now)
        if failed:
            logger.warning("Alarms still not scheduled after resume: %s", ", ".join(failed))
        return failed

    # alarm list mutations

    def add_alarm(
        self,
        hour: int,
        minute: int,
        label: Optional[str] = None,
        repeat_days: Iterable = (),
        **options,
    ) -> AlarmRecord:
        now = self._now()
        merged = {**self.defaults, **options}
        alarm = AlarmRecord.create(
            hour, minute, label=label or "", repeat_days=repeat_days, created_at=now, **merged
        )
        with self._lock:
            self._commit(self._alarms + [alarm])
            self._schedule_quietly(alarm, now)
        logger.info("Alarm %s added for %s (label=%s)", alarm.id, alarm.time, alarm.label)
        return alarm

    def update_alarm(self, alarm_id: str, **changes) -> AlarmRecord:
        now = self._now()
        with self._lock:
            current = self._require(alarm_id)
            if "skip_next_at" not in changes and {"hour", "minute", "repeat_days"} & set(changes):
                changes["skip_next_at"] = None
            updated = current.with_changes(**changes)
            self._commit([updated if a.id == alarm_id else a for a in self._alarms])
            if updated.is_active:
                self._schedule_quietly(updated, now, reschedule=True)
            else:
                self.scheduler.cancel(alarm_id)
                self.controller.discard(alarm_id, now)
        logger.info("Alarm %s updated (%s)", alarm_id, ", ".join(sorted(changes)))
        return updated

    def set_active(self, alarm_id: str, active: bool) -> AlarmRecord:
        return self.update_alarm(alarm_id, is_active=active)

    def delete_alarm(self, alarm_id: str) -> Optional[AlarmRecord]:
        now = self._now()
        with self._lock:
            alarm = self.get_alarm(alarm_id)
            if alarm is None:
                return None
            self._commit([a for a in self._alarms if a.id != alarm_id])
            self.scheduler.cancel(alarm_id)
            self.controller.discard(alarm_id, now)
        logger.info("Removed alarm %s", alarm_id)
        return alarm

    def duplicate_alarm(self, alarm_id: str) -> AlarmRecord:
        with self._lock:
            source = self._require(alarm_id)
            label = f"{source.label} (Copy)" if source.label else "Copy"
            copy = replace(
                source,
                id=new_alarm_id(),
                label=label,
                is_active=False,
                skip_next_at=None,
                created_at=self._now(),
                current_snooze_count=0,
            )
            self._commit(self._alarms + [copy])
        logger.info("Alarm %s duplicated as %s", alarm_id, copy.id)
        return copy

    def skip_next(self, alarm_id: str) -> Optional[datetime]:
        """Skip only the upcoming occurrence; returns the skipped instant."""
        now = self._now()
        with self._lock:
            alarm = self._require(alarm_id)
            skipped = next_occurrence(replace(alarm, skip_next_at=None), now)
            if skipped is None:
                return None
            updated = alarm.with_changes(skip_next_at=skipped)
            self._commit([updated if a.id == alarm_id else a for a in self._alarms])
            self._schedule_quietly(updated, now, reschedule=True)
        logger.info("Alarm %s will skip its occurrence at %s", alarm_id, skipped.isoformat())
        return skipped

    def schedule_test(self, alarm_id: str, delay_seconds: int = 10) -> FireEvent:
        with self._lock:
            alarm = self._require(alarm_id)
            if self.controller.snoozed_until(alarm_id) is not None or self.controller.is_ringing(alarm_id):
                raise ValidationError(f"Alarm {alarm.time} is ringing or snoozed, test ring not allowed")
            event = self.scheduler.schedule_once(alarm, self._now() + timedelta(seconds=delay_seconds))
        logger.info("Test ring for alarm %s at %s", alarm_id, event.scheduled_at.isoformat())
        return event

    # queries

    def list_alarms(self) -> List[AlarmRecord]:
        with self._lock:
            return list(self._alarms)

    def get_alarm(self, alarm_id: str) -> Optional[AlarmRecord]:
        with self._lock:
            for alarm in self._alarms:
                if alarm.id == alarm_id:
                    return alarm
        return None

    def alarm_by_index(self, index: int) -> Optional[AlarmRecord]:
        """1-based position in the user's list."""
        with self._lock:
            if 1 <= index <= len(self._alarms):
                return self._alarms[index - 1]
        return None

    def next_alarm(self, now: Optional[datetime] = None) -> Optional[Tuple[AlarmRecord, datetime]]:
        now = now or self._now()
        best: Optional[Tuple[AlarmRecord, datetime]] = None
        with self._lock:
            for alarm in self._alarms:
                candidates = [next_occurrence(alarm, now), self.controller.snoozed_until(alarm.id)]
                for when in candidates:
                    if when is not None and (best is None or when < best[1]):
                        best = (alarm, when)
        return best

    def unscheduled_alarm_ids(self) -> Set[str]:
        return self.scheduler.unscheduled_ids

    @property
    def state(self) -> TriggerState:
        with self._lock:
            return self.controller.state

    @property
    def is_ringing(self) -> bool:
        return self.state is TriggerState.RINGING

    @property
    def ringing_alarm(self) -> Optional[AlarmRecord]:
        with self._lock:
            return self.controller.ringing_alarm

    # ringing episode

    def dismiss(self, now: Optional[datetime] = None) -> TriggerResult:
        with self._lock:
            return self.controller.request_dismiss(now or self._now())

    def snooze(self, now: Optional[datetime] = None) -> TriggerResult:
        with self._lock:
            return self.controller.request_snooze(now or self._now())

    def complete_mission(self, kind: str) -> bool:
        with self._lock:
            episode = self.controller.episode
            if episode is None or kind not in episode.missions:
                return False
            return self.mission_gate.complete(episode.id, kind)

    def remaining_missions(self) -> List[str]:
        with self._lock:
            episode = self.controller.episode
            if episode is None or episode.gate_waived:
                return []
            return self.mission_gate.remaining(episode.id)

    # internals

    def _now(self) -> datetime:
        return self._clock()

    def _require(self, alarm_id: str) -> AlarmRecord:
        alarm = self.get_alarm(alarm_id)
        if alarm is None:
            raise ValidationError(f"Unknown alarm {alarm_id}")
        return alarm

    def _commit(self, alarms: List[AlarmRecord]) -> None:
        # The in-memory list only changes once the store accepted it.
        self.store.save_all(alarms)
        self._alarms = list(alarms)

    def _schedule_quietly(self, alarm: AlarmRecord, now: datetime, reschedule: bool = False) -> None:
        try:
            if reschedule:
                self.scheduler.reschedule(alarm, now)
            else:
                self.scheduler.schedule(alarm, now)
        except SchedulingError as exc:
            logger.warning("Alarm %s saved but not scheduled, will retry on resume: %s", alarm.id, exc)

    def _deactivate_after_fire(self, alarm_id: str) -> None:
        alarm = self.get_alarm(alarm_id)
        if alarm is None or not alarm.is_active or alarm.is_repeating:
            return
        try:
            self._commit([replace(a, is_active=False) if a.id == alarm_id else a for a in self._alarms])
        except StorageError:
            logger.error("Failed to switch off one-shot alarm %s", alarm_id, exc_info=True)
            return
        logger.info("One-shot alarm %s switched off", alarm_id)

    def _on_episode_started(self, episode: Episode) -> None:
        if episode.event.kind is OccurrenceKind.NORMAL:
            self._deactivate_after_fire(episode.alarm.id)
        if self.on_alarm_triggered:
            try:
                self.on_alarm_triggered(episode.alarm)
            except Exception:  # pragma: no cover - callback safety
                logger.error("on_alarm_triggered callback failed", exc_info=True)

    def _on_missed(self, alarm: AlarmRecord, event: FireEvent) -> None:
        if event.kind is OccurrenceKind.NORMAL:
            self._deactivate_after_fire(alarm.id)

    def _expire_skips(self, now: datetime) -> None:
        expired = [a.id for a in self._alarms if a.skip_next_at is not None and a.skip_next_at <= now]
        if not expired:
            return
        try:
            self._commit([replace(a, skip_next_at=None) if a.id in expired else a for a in self._alarms])
        except StorageError:
            logger.error("Failed to clear skipped occurrences", exc_info=True)

    def _loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            now = self._now()
            with self._lock:
                self._expire_skips(now)
                self.scheduler.poll(now)
