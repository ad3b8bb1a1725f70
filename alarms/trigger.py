from __future__ import annotations

import logging
import random
import uuid
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, Optional, Tuple

from .errors import MissionGateError, SchedulingError
from .missions import required_missions
from .models import AlarmRecord, FireEvent, OccurrenceKind
from .ports import AudioWakePort, MissionGatePort

logger = logging.getLogger(__name__)


class TriggerState(str, Enum):
    IDLE = "idle"
    RINGING = "ringing"
    SNOOZED = "snoozed"


@dataclass
class Episode:
    id: str
    alarm: AlarmRecord
    event: FireEvent
    started_at: datetime
    missions: Tuple[str, ...] = ()
    gate_waived: bool = False


@dataclass
class TriggerResult:
    accepted: bool
    reason: str
    state: TriggerState
    alarm: Optional[AlarmRecord] = None
    next_fire_at: Optional[datetime] = None
    forced: bool = False


class TriggerController:
    """Owns what is currently ringing.

    Idle -> Ringing on a fire; Ringing -> Idle on dismiss (mission gated) or
    snooze (budget gated). Snoozed is Idle with at least one snooze pending.
    """

    def __init__(
        self,
        scheduler,
        audio: AudioWakePort,
        mission_gate: MissionGatePort,
        rng: Optional[random.Random] = None,
        on_started: Optional[Callable[[Episode], None]] = None,
        on_finished: Optional[Callable[[Episode, str], None]] = None,
    ):
        self.scheduler = scheduler
        self.audio = audio
        self.mission_gate = mission_gate
        self.rng = rng or random.Random()
        self.on_started = on_started
        self.on_finished = on_finished

        self._episode: Optional[Episode] = None
        self._queue: Deque[Tuple[AlarmRecord, FireEvent]] = deque()
        self._snooze_counts: Dict[str, int] = {}
        self._snoozed: Dict[str, datetime] = {}
        scheduler.attach(self)

    @property
    def state(self) -> TriggerState:
        if self._episode is not None:
            return TriggerState.RINGING
        if self._snoozed:
            return TriggerState.SNOOZED
        return TriggerState.IDLE

    @property
    def episode(self) -> Optional[Episode]:
        return self._episode

    @property
    def ringing_alarm(self) -> Optional[AlarmRecord]:
        return self._episode.alarm if self._episode else None

    def is_ringing(self, alarm_id: str) -> bool:
        if self._episode is not None and self._episode.alarm.id == alarm_id:
            return True
        return any(alarm.id == alarm_id for alarm, _ in self._queue)

    def snooze_count(self, alarm_id: str) -> int:
        return self._snooze_counts.get(alarm_id, 0)

    def snoozed_until(self, alarm_id: str) -> Optional[datetime]:
        return self._snoozed.get(alarm_id)

    def on_fired(self, alarm: AlarmRecord, event: FireEvent, now: datetime) -> bool:
        if self.is_ringing(alarm.id):
            logger.info("Alarm %s already has a live episode", alarm.id)
            return False
        if self._episode is not None:
            logger.info("Alarm %s queued behind ringing alarm %s", alarm.id, self._episode.alarm.id)
            self._queue.append((alarm, event))
            return True
        self._start(alarm, event, now)
        return True

    def request_dismiss(self, now: datetime) -> TriggerResult:
        episode = self._episode
        if episode is None:
            return TriggerResult(False, "not_ringing", self.state)
        if episode.missions and not episode.gate_waived:
            try:
                satisfied = self.mission_gate.is_satisfied(episode.id)
            except MissionGateError as exc:
                logger.warning("Mission gate failed for alarm %s, allowing dismissal: %s", episode.alarm.id, exc)
                episode.gate_waived = True
                satisfied = True
            if not satisfied:
                return TriggerResult(False, "missions_pending", self.state, episode.alarm)
        next_fire_at = self._finish(episode, now, "dismissed")
        return TriggerResult(True, "dismissed", self.state, episode.alarm, next_fire_at=next_fire_at)

    def request_snooze(self, now: datetime) -> TriggerResult:
        episode = self._episode
        if episode is None:
            return TriggerResult(False, "not_ringing", self.state)
        alarm = episode.alarm
        if not alarm.snooze_enabled:
            return TriggerResult(False, "snooze_disabled", self.state, alarm)
        if not alarm.can_snooze():
            logger.warning(
                "Alarm %s used all %s snoozes, dismissing without missions", alarm.id, alarm.max_snoozes
            )
            next_fire_at = self._finish(episode, now, "forced_dismiss")
            return TriggerResult(
                False, "snooze_budget_exhausted", self.state, alarm, next_fire_at=next_fire_at, forced=True
            )

        snoozed = replace(alarm, current_snooze_count=alarm.current_snooze_count + 1)
        try:
            event = self.scheduler.schedule_snooze(snoozed, now)
        except SchedulingError as exc:
            logger.warning("Snooze for alarm %s could not be registered, keeps ringing: %s", alarm.id, exc)
            return TriggerResult(False, "snooze_unavailable", self.state, alarm)

        self._snooze_counts[alarm.id] = snoozed.current_snooze_count
        self._snoozed[alarm.id] = event.scheduled_at
        self._close(episode)
        self._notify_finished(episode, "snoozed")
        self._start_next(now)
        return TriggerResult(True, "snoozed", self.state, snoozed, next_fire_at=event.scheduled_at)

    def expire_snooze(self, alarm_id: str) -> None:
        """Forget a snooze whose occurrence was missed; the next normal fire starts fresh."""
        if self._snoozed.pop(alarm_id, None) is not None:
            self._snooze_counts[alarm_id] = 0
            logger.info("Pending snooze of alarm %s expired", alarm_id)

    def discard(self, alarm_id: str, now: datetime) -> None:
        """Forget every trace of ``alarm_id`` (deleted or switched off by the user)."""
        self._queue = deque((a, e) for a, e in self._queue if a.id != alarm_id)
        self._snoozed.pop(alarm_id, None)
        self._snooze_counts.pop(alarm_id, None)
        episode = self._episode
        if episode is not None and episode.alarm.id == alarm_id:
            logger.info("Stopping ringing alarm %s", alarm_id)
            self._close(episode)
            self._notify_finished(episode, "discarded")
            self._start_next(now)

    def _start(self, alarm: AlarmRecord, event: FireEvent, now: datetime) -> None:
        if event.kind is OccurrenceKind.NORMAL:
            if self._snoozed.pop(alarm.id, None) is not None:
                self.scheduler.cancel_snooze(alarm.id)
                logger.info("Normal occurrence of alarm %s supersedes its pending snooze", alarm.id)
            self._snooze_counts[alarm.id] = 0
        else:
            self._snoozed.pop(alarm.id, None)
        ringing = replace(alarm, current_snooze_count=self._snooze_counts.get(alarm.id, 0))
        episode = Episode(
            id=f"ep_{uuid.uuid4().hex[:8]}",
            alarm=ringing,
            event=event,
            started_at=now,
            missions=required_missions(alarm, self.rng),
        )
        if episode.missions:
            try:
                self.mission_gate.begin(episode.id, episode.missions)
            except MissionGateError as exc:
                logger.warning("Missions for alarm %s unavailable, gate waived: %s", alarm.id, exc)
                episode.gate_waived = True
        self._episode = episode
        logger.info(
            "Alarm %s ringing (%s occurrence at %s, label=%s)",
            alarm.id,
            event.kind.value,
            event.scheduled_at.isoformat(),
            alarm.label,
        )
        try:
            self.audio.start(alarm.sound_name, alarm.volume, loop=True)
        except Exception:
            logger.warning("Alarm audio failed to start for %s, ringing silently", alarm.id, exc_info=True)
        if self.on_started:
            try:
                self.on_started(episode)
            except Exception:  # pragma: no cover - callback safety
                logger.error("on_started callback failed", exc_info=True)

    def _finish(self, episode: Episode, now: datetime, outcome: str) -> Optional[datetime]:
        alarm_id = episode.alarm.id
        self._snooze_counts[alarm_id] = 0
        self._snoozed.pop(alarm_id, None)
        self._close(episode)
        logger.info("Alarm %s %s", alarm_id, outcome.replace("_", " "))
        next_fire_at = None
        try:
            upcoming = self.scheduler.ensure_scheduled(episode.alarm, now)
            next_fire_at = upcoming[0].scheduled_at if upcoming else None
        except SchedulingError as exc:
            logger.warning("Alarm %s could not be re-armed after %s: %s", alarm_id, outcome, exc)
        self._notify_finished(episode, outcome)
        self._start_next(now)
        return next_fire_at

    def _close(self, episode: Episode) -> None:
        self._episode = None
        try:
            self.audio.stop()
        except Exception:
            logger.warning("Alarm audio failed to stop cleanly", exc_info=True)
        if episode.missions:
            self.mission_gate.end(episode.id)

    def _notify_finished(self, episode: Episode, outcome: str) -> None:
        if self.on_finished:
            try:
                self.on_finished(episode, outcome)
            except Exception:  # pragma: no cover - callback safety
                logger.error("on_finished callback failed", exc_info=True)

    def _start_next(self, now: datetime) -> None:
        while self._queue and self._episode is None:
            alarm, event = self._queue.popleft()
            current = self.scheduler.resolve_alarm(alarm.id)
            if current is None:
                continue
            self._start(current, event, now)
