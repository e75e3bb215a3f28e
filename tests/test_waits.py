"""Tests for cancellable waits."""

import threading
import time
from datetime import timedelta

import pytest

from activity_api.errors import SyncCancelled
from activity_api.waits import InterruptibleWait, to_seconds

pytestmark = pytest.mark.unit


def test_to_seconds():
    assert to_seconds(3) == 3.0
    assert to_seconds(timedelta(minutes=2)) == 120.0


def test_short_wait_completes():
    waiter = InterruptibleWait()
    start = time.monotonic()
    waiter.wait(0.05)
    assert time.monotonic() - start >= 0.04


def test_zero_wait_returns_immediately():
    InterruptibleWait().wait(0)
    InterruptibleWait().wait(timedelta(seconds=-1))


def test_wait_after_cancel_raises():
    waiter = InterruptibleWait()
    waiter.cancel()
    assert waiter.cancelled
    with pytest.raises(SyncCancelled):
        waiter.wait(0)
    with pytest.raises(SyncCancelled):
        waiter.check()


def test_shutdown_interrupts_long_wait():
    event = threading.Event()
    waiter = InterruptibleWait(event)
    threading.Timer(0.05, event.set).start()

    start = time.monotonic()
    with pytest.raises(SyncCancelled):
        waiter.wait(30, reason="test")
    assert time.monotonic() - start < 5


def test_shared_event_releases_every_waiter():
    event = threading.Event()
    outcomes = []

    def worker():
        try:
            InterruptibleWait(event).wait(30)
            outcomes.append("finished")
        except SyncCancelled:
            outcomes.append("cancelled")

    threads = [threading.Thread(target=worker) for _ in range(3)]
    for thread in threads:
        thread.start()
    event.set()
    for thread in threads:
        thread.join(5)

    assert outcomes == ["cancelled"] * 3
