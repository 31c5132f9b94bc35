"""Tests for the status line and the auto-identify scheduler"""
import asyncio

import pytest

from track_id.scheduler import AutoIdentifyScheduler, SchedulerState
from track_id.status import StatusLevel, StatusLine


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_status_clears_after_timeout():
    clock = FakeClock()
    status = StatusLine(clear_after=3.0, clock=clock)
    status.show("No match found.", StatusLevel.WARNING)
    assert status.message == "No match found."
    clock.now += 2.9
    assert status.level == StatusLevel.WARNING
    clock.now += 0.2
    assert status.message == ""
    assert status.to_dict() == {"message": "", "level": "info"}


def test_progress_status_is_sticky():
    clock = FakeClock()
    status = StatusLine(clear_after=3.0, clock=clock)
    status.show("Capturing audio from stream...", StatusLevel.PROGRESS)
    clock.now += 60
    assert status.message == "Capturing audio from stream..."
    status.show("Track identified: Strobe", StatusLevel.SUCCESS, clear_after=5)
    clock.now += 4
    assert status.message == "Track identified: Strobe"
    clock.now += 2
    assert status.message == ""


async def test_scheduler_fires_after_interval():
    fired = []
    scheduler = AutoIdentifyScheduler(lambda: fired.append(True), interval=0.05)
    scheduler.refresh(enabled=True, connected=True, in_flight=False)
    assert scheduler.state == SchedulerState.ARMED
    await asyncio.sleep(0.1)
    assert fired == [True]
    assert scheduler.state == SchedulerState.FIRING
    assert not scheduler.has_pending_timer
    scheduler.shutdown()


async def test_scheduler_rearms_after_attempt():
    fired = []
    scheduler = AutoIdentifyScheduler(lambda: fired.append(True), interval=0.05)
    scheduler.refresh(enabled=True, connected=True, in_flight=False)
    await asyncio.sleep(0.07)
    # attempt running: stays firing, no new timer
    scheduler.refresh(enabled=True, connected=True, in_flight=True)
    assert scheduler.state == SchedulerState.FIRING
    assert not scheduler.has_pending_timer
    # attempt finished
    scheduler.refresh(enabled=True, connected=True, in_flight=False)
    assert scheduler.state == SchedulerState.ARMED
    await asyncio.sleep(0.07)
    assert len(fired) == 2
    scheduler.shutdown()


@pytest.mark.parametrize("enabled, connected, in_flight", [
    (False, True, False),
    (True, False, False),
    (True, True, True),
])
async def test_scheduler_disarms(enabled, connected, in_flight):
    fired = []
    scheduler = AutoIdentifyScheduler(lambda: fired.append(True), interval=0.05)
    scheduler.refresh(enabled=True, connected=True, in_flight=False)
    scheduler.refresh(enabled=enabled, connected=connected, in_flight=in_flight)
    assert scheduler.state == SchedulerState.DISABLED
    assert not scheduler.has_pending_timer
    await asyncio.sleep(0.08)
    assert fired == []


async def test_refresh_keeps_pending_timer():
    scheduler = AutoIdentifyScheduler(lambda: None, interval=10)
    scheduler.refresh(enabled=True, connected=True, in_flight=False)
    timer = scheduler._timer
    scheduler.refresh(enabled=True, connected=True, in_flight=False)
    assert scheduler._timer is timer
    scheduler.shutdown()


async def test_shutdown_leaves_no_timer():
    fired = []
    scheduler = AutoIdentifyScheduler(lambda: fired.append(True), interval=0.05)
    scheduler.refresh(enabled=True, connected=True, in_flight=False)
    scheduler.shutdown()
    assert scheduler.state == SchedulerState.DISABLED
    assert not scheduler.has_pending_timer
    await asyncio.sleep(0.08)
    assert fired == []


def test_scheduler_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        AutoIdentifyScheduler(lambda: None, interval=0)


def test_flash_over_progress_restores_progress():
    clock = FakeClock()
    status = StatusLine(clear_after=3.0, clock=clock)
    status.show("Capturing audio from stream...", StatusLevel.PROGRESS)
    status.flash("Already identifying...")
    assert status.message == "Already identifying..."
    clock.now += 3.1
    assert status.message == "Capturing audio from stream..."
    assert status.level == StatusLevel.PROGRESS
    clock.now += 60
    assert status.message == "Capturing audio from stream..."


def test_flash_without_progress_clears():
    clock = FakeClock()
    status = StatusLine(clear_after=3.0, clock=clock)
    status.flash("Already identifying...")
    clock.now += 3.1
    assert status.message == ""


def test_new_message_replaces_pending_restore():
    clock = FakeClock()
    status = StatusLine(clear_after=3.0, clock=clock)
    status.show("Capturing audio from stream...", StatusLevel.PROGRESS)
    status.flash("Already identifying...")
    status.show("No match found.", StatusLevel.WARNING)
    clock.now += 3.1
    assert status.message == ""
