"""
Auto-Identify Scheduler

Fires an identification every `interval` seconds while playback is
connected and auto-identify is on. The timer is single-shot and re-armed
after each attempt, so at most one tick is ever pending and a tick never
overlaps an attempt already in flight.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional

from logging_config import get_logger

logger = get_logger(__name__)


class SchedulerState(Enum):
    DISABLED = "disabled"
    ARMED = "armed"
    FIRING = "firing"


class AutoIdentifyScheduler:
    """
    Args:
        trigger: Called when the timer fires. Must start the attempt and
            return immediately; the scheduler never waits on or cancels it.
        interval: Seconds between the end of one attempt and the next tick
    """

    DEFAULT_INTERVAL = 60.0

    def __init__(self, trigger: Callable[[], None], interval: float = DEFAULT_INTERVAL):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._trigger = trigger
        self.interval = interval
        self._state = SchedulerState.DISABLED
        self._timer: Optional[asyncio.Task] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def refresh(self, enabled: bool, connected: bool, in_flight: bool) -> None:
        """
        Re-evaluate on any change of toggle, connection or capture state.

        Disarms when auto-identify is off, playback is not connected, or a
        capture is already running; otherwise makes sure a timer is pending.
        """
        if enabled and connected and in_flight and self._state == SchedulerState.FIRING:
            return  # our own tick is running; re-armed when it finishes
        if not enabled or not connected or in_flight:
            self._disarm()
            return
        if self._state != SchedulerState.ARMED or not self.has_pending_timer:
            self._arm()

    def shutdown(self) -> None:
        self._disarm()

    def _arm(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._wait_and_fire())
        self._set_state(SchedulerState.ARMED)

    def _disarm(self) -> None:
        self._cancel_timer()
        # A tick that already fired is the caller's attempt now; leave it running
        self._set_state(SchedulerState.DISABLED)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _wait_and_fire(self) -> None:
        await asyncio.sleep(self.interval)
        self._timer = None
        self._set_state(SchedulerState.FIRING)
        try:
            self._trigger()
        except Exception as e:
            logger.error(f"Auto-identify trigger failed: {e}")
            self._set_state(SchedulerState.DISABLED)

    def _set_state(self, state: SchedulerState) -> None:
        if state == self._state:
            return
        logger.debug(f"Auto-identify: {self._state.value} -> {state.value}")
        self._state = state
