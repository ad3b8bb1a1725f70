from __future__ import annotations

import logging
import random
from threading import Lock
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import MissionGateError, ValidationError
from .models import MISSION_TYPES, AlarmRecord

logger = logging.getLogger(__name__)


class MissionEvaluator:
    """Completion state of one dismissal mission.

    The games themselves live in the UI; the engine only tracks whether
    each one has been completed or has become impossible to complete.
    """

    kind = ""
    requires: Optional[str] = None

    def __init__(self) -> None:
        self.completed = False
        self.failure: Optional[str] = None

    def complete(self) -> None:
        if self.failure:
            raise MissionGateError(f"{self.kind} mission already failed: {self.failure}")
        self.completed = True

    def fail(self, reason: str) -> None:
        self.failure = reason

    def is_satisfied(self) -> bool:
        if self.failure:
            raise MissionGateError(f"{self.kind} mission cannot be completed: {self.failure}")
        return self.completed


class MathMission(MissionEvaluator):
    kind = "math"


class MemoryMission(MissionEvaluator):
    kind = "memory"


class ShakeMission(MissionEvaluator):
    kind = "shake"
    requires = "motion"


class PhotoMission(MissionEvaluator):
    kind = "photo"
    requires = "camera"


class BarcodeMission(MissionEvaluator):
    kind = "barcode"
    requires = "camera"


MISSION_REGISTRY = {
    cls.kind: cls for cls in (MathMission, MemoryMission, ShakeMission, PhotoMission, BarcodeMission)
}


def create_mission(kind: str) -> MissionEvaluator:
    try:
        return MISSION_REGISTRY[kind]()
    except KeyError:
        raise ValidationError(f"Unknown mission type: {kind!r}") from None


def pick_missions(count: int, rng: Optional[random.Random] = None) -> List[str]:
    rng = rng or random.Random()
    return rng.sample(list(MISSION_TYPES), min(max(count, 0), len(MISSION_TYPES)))


def required_missions(alarm: AlarmRecord, rng: Optional[random.Random] = None) -> Tuple[str, ...]:
    """Missions that must be completed before ``alarm`` may be dismissed."""
    if not alarm.mission_enabled:
        return ()
    missions = list(alarm.selected_missions) or pick_missions(alarm.mission_count, rng)
    if alarm.wake_up_check_enabled:
        missions.append(alarm.wake_up_check_type)
    return tuple(missions)


class MissionBoard:
    """Tracks mission progress per ringing episode."""

    def __init__(self, granted_permissions: Iterable[str] = ("camera", "motion")):
        self.granted_permissions = set(granted_permissions)
        self._sets: Dict[str, List[MissionEvaluator]] = {}
        self._lock = Lock()

    def begin(self, set_id: str, missions: Sequence[str]) -> None:
        evaluators = [create_mission(kind) for kind in missions]
        for evaluator in evaluators:
            if evaluator.requires and evaluator.requires not in self.granted_permissions:
                evaluator.fail(f"{evaluator.requires} permission denied")
                logger.warning("Mission %s cannot run: %s", evaluator.kind, evaluator.failure)
        with self._lock:
            self._sets[set_id] = evaluators
        logger.info("Mission set %s started: %s", set_id, ", ".join(missions) or "none")

    def complete(self, set_id: str, kind: str) -> bool:
        """Mark the first open mission of ``kind`` done; False when none is open."""
        with self._lock:
            for evaluator in self._sets.get(set_id, []):
                if evaluator.kind == kind and not evaluator.completed and not evaluator.failure:
                    evaluator.complete()
                    logger.info("Mission %s completed in set %s", kind, set_id)
                    return True
        return False

    def fail(self, set_id: str, kind: str, reason: str) -> None:
        with self._lock:
            for evaluator in self._sets.get(set_id, []):
                if evaluator.kind == kind and not evaluator.completed:
                    evaluator.fail(reason)
                    logger.warning("Mission %s failed in set %s: %s", kind, set_id, reason)
                    return

    def is_satisfied(self, set_id: str) -> bool:
        with self._lock:
            if set_id not in self._sets:
                raise MissionGateError(f"Unknown mission set {set_id}")
            results = [evaluator.is_satisfied() for evaluator in self._sets[set_id]]
            return all(results)

    def progress(self, set_id: str) -> Tuple[int, int]:
        with self._lock:
            evaluators = self._sets.get(set_id, [])
            return sum(1 for e in evaluators if e.completed), len(evaluators)

    def remaining(self, set_id: str) -> List[str]:
        with self._lock:
            return [e.kind for e in self._sets.get(set_id, []) if not e.completed]

    def end(self, set_id: str) -> None:
        with self._lock:
            self._sets.pop(set_id, None)
