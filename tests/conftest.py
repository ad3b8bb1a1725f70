import random
from datetime import datetime, timedelta, timezone

import pytest

from alarms.manager import AlarmManager
from alarms.missions import MissionBoard
from alarms.notifications import LocalNotificationCenter
from alarms.storage import AlarmStore

# 2025-01-06 is a Monday.
MONDAY = datetime(2025, 1, 6, 0, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeAudio:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.started = []
        self.stops = 0

    def start(self, track_ref, volume, loop=True):
        if self.fail:
            raise OSError("audio device busy")
        self.started.append((track_ref, volume, loop))

    def stop(self):
        self.stops += 1


class FakeController:
    def __init__(self):
        self.fired = []
        self.ringing = set()
        self.expired = []

    def is_ringing(self, alarm_id):
        return alarm_id in self.ringing

    def on_fired(self, alarm, event, now):
        self.fired.append(event)
        self.ringing.add(alarm.id)
        return True

    def expire_snooze(self, alarm_id):
        self.expired.append(alarm_id)


@pytest.fixture
def clock():
    return Clock(MONDAY.replace(hour=6))


@pytest.fixture
def notifier(clock):
    return LocalNotificationCenter(clock=clock)


@pytest.fixture
def audio():
    return FakeAudio()


@pytest.fixture
def board():
    return MissionBoard()


@pytest.fixture
def store(tmp_path):
    return AlarmStore(tmp_path / "alarms.json")


@pytest.fixture
def manager(store, notifier, audio, board, clock):
    return AlarmManager(
        store=store,
        notifier=notifier,
        sound_player=audio,
        mission_gate=board,
        timezone=timezone.utc,
        rng=random.Random(7),
        clock=clock,
    )
