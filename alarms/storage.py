from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable, List

from .errors import StorageError
from .models import AlarmRecord

logger = logging.getLogger(__name__)


def load_alarms(path: Path) -> List[AlarmRecord]:
    if not path.exists():
        return []
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as exc:
        raise StorageError(f"Failed to load alarms from {path}: {exc}") from exc
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise StorageError(f"Alarm file {path} must hold a list, got {type(payload).__name__}")
    alarms: List[AlarmRecord] = []
    seen = set()
    for item in payload:
        try:
            alarm = AlarmRecord.from_dict(item)
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("Skipping alarm item due to parse error: %s", exc)
            continue
        if alarm.id in seen:
            logger.warning("Skipping duplicate alarm id %s", alarm.id)
            continue
        seen.add(alarm.id)
        alarms.append(alarm)
    return alarms


def save_alarms(path: Path, alarms: Iterable[AlarmRecord]) -> None:
    serializable = [a.to_dict() for a in alarms]
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(serializable, f, ensure_ascii=False, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as exc:
        raise StorageError(f"Failed to save alarms to {path}: {exc}") from exc


class AlarmStore:
    """JSON file holding the full alarm list, in user order."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load_all(self) -> List[AlarmRecord]:
        alarms = load_alarms(self.path)
        logger.debug("Loaded %s alarms from %s", len(alarms), self.path)
        return alarms

    def save_all(self, alarms: Iterable[AlarmRecord]) -> None:
        save_alarms(self.path, alarms)
