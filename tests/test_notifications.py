import pytest

from alarms.errors import SchedulingError
from alarms.models import FireEvent, OccurrenceKind

from conftest import MONDAY


def _event(hour=7):
    return FireEvent("al_1", MONDAY.replace(hour=hour), OccurrenceKind.NORMAL)


def test_due_notifications_are_delivered_once(notifier, clock):
    received = []
    notifier.subscribe(received.append)
    notifier.schedule_at(MONDAY.replace(hour=7), _event())
    assert notifier.deliver_due() == 0
    clock.now = MONDAY.replace(hour=7)
    assert notifier.deliver_due() == 1
    assert notifier.deliver_due() == 0
    assert received == [_event()]


def test_cancelled_notification_never_fires(notifier, clock):
    received = []
    notifier.subscribe(received.append)
    handle = notifier.schedule_at(MONDAY.replace(hour=7), _event())
    notifier.cancel(handle)
    notifier.cancel(handle)
    clock.now = MONDAY.replace(hour=8)
    assert notifier.deliver_due() == 0
    assert received == []


def test_failing_subscriber_does_not_block_others(notifier, clock, caplog):
    received = []

    def broken(event):
        raise RuntimeError("boom")

    notifier.subscribe(broken)
    notifier.subscribe(received.append)
    notifier.schedule_at(MONDAY.replace(hour=7), _event())
    clock.now = MONDAY.replace(hour=7)
    notifier.deliver_due()
    assert received == [_event()]
    assert "subscriber failed" in caplog.text


def test_registration_needs_permission(notifier):
    notifier.permission_granted = False
    with pytest.raises(SchedulingError):
        notifier.schedule_at(MONDAY.replace(hour=7), _event())
    assert notifier.pending() == []


def test_background_thread_starts_and_stops(notifier):
    notifier.start()
    notifier.shutdown()
    assert notifier._thread is None
