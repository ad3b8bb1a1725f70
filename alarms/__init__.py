"""Alarm scheduling and triggering engine for Wake Force."""

from .errors import AlarmError, MissionGateError, SchedulingError, StorageError, ValidationError
from .manager import AlarmManager
from .models import AlarmRecord, FireEvent, OccurrenceKind, Weekday
from .parser import AlarmCommand, parse_command
from .trigger import TriggerController, TriggerResult, TriggerState
