from __future__ import annotations

import logging
import os
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

LOCALTIME_PATH = Path("/etc/localtime")


def _local_zone_name(localtime_path: Path = LOCALTIME_PATH) -> Optional[str]:
    name = os.environ.get("TZ", "").lstrip(":")
    if name:
        return name
    try:
        target = str(localtime_path.resolve())
    except OSError:
        return None
    _, marker, key = target.partition("zoneinfo/")
    return key if marker else None


def local_timezone() -> tzinfo:
    """IANA zone of the device, so wall-clock alarm times follow DST changes.

    Falls back to the current fixed UTC offset when no zone name can be found.
    """
    name = _local_zone_name()
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Local timezone %s not found, using the current UTC offset", name)
    return datetime.now().astimezone().tzinfo  # type: ignore[return-value]


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Timezone by IANA name; device local time when unset or unknown."""
    if not name:
        return local_timezone()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        logger.warning("Failed to load timezone %s via zoneinfo (%s), using local time", name, exc)
    return local_timezone()


def now_in_tz(tz) -> datetime:
    if tz:
        return datetime.now(tz)
    return datetime.now().astimezone()


def format_tz_offset(tz) -> str:
    sample = now_in_tz(tz)
    offset = sample.utcoffset()
    if offset is None:
        return ""
    total_minutes = int(offset.total_seconds() // 60)
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"
