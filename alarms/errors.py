from __future__ import annotations


class AlarmError(Exception):
    """Base class for alarm engine failures."""


class ValidationError(AlarmError, ValueError):
    """Malformed alarm record, rejected before it is persisted."""


class StorageError(AlarmError):
    """The alarm store could not be read or written."""


class SchedulingError(AlarmError):
    """A notification could not be registered or cancelled."""


class MissionGateError(AlarmError):
    """Mission progress could not be evaluated (e.g. camera permission denied)."""
