from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .errors import StorageError, ValidationError
from .manager import AlarmManager
from .models import WEEKDAY_ORDER, AlarmRecord
from .parser import parse_command

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Commands:\n"
    "  add 7:30 [mon,wed,fri|weekdays|weekends|daily] [label]   add in 15 min [label]\n"
    "  list | next | delete N | on N | off N | skip N | copy N | test N\n"
    "  snooze | stop | done <math|memory|shake|photo|barcode> | resume"
)


@dataclass
class IntentResult:
    handled: bool
    response_text: Optional[str] = None
    action: Optional[str] = None


class IntentRouter:
    def __init__(self, alarm_manager: AlarmManager, default_label: str = "Alarm"):
        self.alarm_manager = alarm_manager
        self.default_label = default_label

    def handle_text(self, text: str, now: datetime) -> Optional[IntentResult]:
        parsed = parse_command(text)
        if not parsed:
            return None
        logger.debug("Command parsed: %s", parsed)

        if parsed.action == "unknown":
            return IntentResult(handled=False, response_text=parsed.error, action=parsed.action)
        try:
            return self._dispatch(parsed, now)
        except ValidationError as exc:
            return IntentResult(handled=False, response_text=f"Rejected: {exc}", action=parsed.action)
        except StorageError as exc:
            logger.error("Command %s failed to persist: %s", parsed.action, exc)
            return IntentResult(handled=False, response_text="Could not save alarms, try again.", action=parsed.action)

    def _dispatch(self, parsed, now: datetime) -> IntentResult:
        manager = self.alarm_manager

        if parsed.action == "help":
            return IntentResult(handled=True, response_text=HELP_TEXT, action="help")

        if parsed.action == "list":
            alarms = manager.list_alarms()
            if not alarms:
                resp = "No alarms yet."
            else:
                unscheduled = manager.unscheduled_alarm_ids()
                parts = [
                    f"{idx}) {describe_alarm(alarm)}" + ("  [not scheduled]" if alarm.id in unscheduled else "")
                    for idx, alarm in enumerate(alarms, start=1)
                ]
                resp = "Your alarms:\n" + "\n".join(parts)
            return IntentResult(handled=True, response_text=resp, action="list")

        if parsed.action == "next":
            upcoming = manager.next_alarm(now)
            if not upcoming:
                resp = "No upcoming alarms."
            else:
                alarm, when = upcoming
                resp = f"Next alarm {format_alarm_time(when, now)} ({alarm.label or self.default_label})."
            return IntentResult(handled=True, response_text=resp, action="next")

        if parsed.action == "add":
            if parsed.delta_minutes:
                target = now + timedelta(minutes=parsed.delta_minutes)
                hour, minute = target.hour, target.minute
            else:
                hour, minute = parsed.hour, parsed.minute
            alarm = manager.add_alarm(hour, minute, label=parsed.label, repeat_days=parsed.repeat_days)
            resp = f"Alarm set: {describe_alarm(alarm)}."
            if alarm.id in manager.unscheduled_alarm_ids():
                resp += " Warning: it could not be scheduled yet, check notification permission."
            return IntentResult(handled=True, response_text=resp, action="add")

        if parsed.action in ("remove", "enable", "disable", "skip", "duplicate", "test"):
            alarm = manager.alarm_by_index(parsed.index)
            if not alarm:
                return IntentResult(handled=False, response_text="No such alarm.", action=parsed.action)
            return self._handle_indexed(parsed.action, alarm, now)

        if parsed.action == "stop":
            result = manager.dismiss(now)
            if result.accepted:
                resp = "Alarm dismissed."
            elif result.reason == "missions_pending":
                resp = "Finish your missions first: " + ", ".join(manager.remaining_missions()) + "."
            else:
                resp = "Nothing is ringing."
            return IntentResult(handled=result.accepted, response_text=resp, action="stop")

        if parsed.action == "snooze":
            result = manager.snooze(now)
            if result.accepted:
                resp = f"Snoozed until {format_alarm_time(result.next_fire_at, now)}."
            elif result.forced:
                resp = "No snoozes left, alarm dismissed."
            elif result.reason == "snooze_disabled":
                resp = "Snooze is off for this alarm."
            elif result.reason == "snooze_unavailable":
                resp = "Snooze could not be scheduled, alarm keeps ringing."
            else:
                resp = "Nothing is ringing, nothing to snooze."
            return IntentResult(handled=result.accepted or result.forced, response_text=resp, action="snooze")

        if parsed.action == "mission":
            if manager.complete_mission(parsed.mission):
                remaining = manager.remaining_missions()
                resp = "Mission done." + (f" Remaining: {', '.join(remaining)}." if remaining else " You can stop the alarm now.")
            else:
                resp = f"No open {parsed.mission} mission."
            return IntentResult(handled=True, response_text=resp, action="mission")

        if parsed.action == "resume":
            failed = manager.resume(now)
            resp = "All alarms scheduled." if not failed else f"{len(failed)} alarm(s) still not scheduled."
            return IntentResult(handled=True, response_text=resp, action="resume")

        return IntentResult(handled=False, response_text=None, action=parsed.action)

    def _handle_indexed(self, action: str, alarm: AlarmRecord, now: datetime) -> IntentResult:
        manager = self.alarm_manager
        if action == "remove":
            manager.delete_alarm(alarm.id)
            resp = f"Removed alarm {alarm.time}."
        elif action == "enable":
            manager.set_active(alarm.id, True)
            resp = f"Alarm {alarm.time} on."
        elif action == "disable":
            manager.set_active(alarm.id, False)
            resp = f"Alarm {alarm.time} off."
        elif action == "skip":
            skipped = manager.skip_next(alarm.id)
            resp = f"Skipping {format_alarm_time(skipped, now)}." if skipped else "Alarm is off, nothing to skip."
        elif action == "duplicate":
            copy = manager.duplicate_alarm(alarm.id)
            resp = f"Copied as '{copy.label}' (off)."
        else:
            event = manager.schedule_test(alarm.id)
            resp = f"Test ring at {event.scheduled_at.strftime('%H:%M:%S')}."
        return IntentResult(handled=True, response_text=resp, action=action)


def describe_alarm(alarm: AlarmRecord) -> str:
    if not alarm.repeat_days:
        days = "once"
    elif len(alarm.repeat_days) == 7:
        days = "daily"
    else:
        days = ",".join(d.value for d in WEEKDAY_ORDER if d in alarm.repeat_days)
    state = "on" if alarm.is_active else "off"
    label = f" {alarm.label}" if alarm.label else ""
    return f"{alarm.time} {days} [{state}]{label}"


def format_alarm_time(dt: datetime, now: datetime) -> str:
    day_prefix = ""
    if dt.date() == now.date():
        day_prefix = "today "
    elif dt.date() == now.date() + timedelta(days=1):
        day_prefix = "tomorrow "
    time_part = dt.strftime("%H:%M")
    if not day_prefix:
        day_prefix = dt.strftime("%a %d.%m ")
    return f"{day_prefix}{time_part}"
