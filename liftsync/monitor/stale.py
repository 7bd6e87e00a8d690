"""Detects sessions abandoned mid-workout and force-ends them."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Awaitable, Callable

from liftsync.core.timers import PeriodicTask
from liftsync.session.machine import Clock, SessionStateMachine, local_now
from liftsync.session.timing import INACTIVITY_THRESHOLD, is_session_inactive

logger = logging.getLogger(__name__)

STALE_CHECK_INTERVAL_SEC = 60.0


class StaleSessionMonitor:
    """Ends the active session once no set was finished within the threshold.

    The reference point is the end of the last recorded set, or the session
    start while no set has been recorded yet.
    """

    def __init__(
        self,
        machine: SessionStateMachine,
        *,
        clock: Clock = local_now,
        threshold: timedelta = INACTIVITY_THRESHOLD,
        interval_sec: float = STALE_CHECK_INTERVAL_SEC,
        on_analytics_refresh: Callable[[], Awaitable[None]] | None = None,
        on_auto_ended: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._machine = machine
        self._now = clock
        self._threshold = threshold
        self._on_analytics_refresh = on_analytics_refresh
        self._on_auto_ended = on_auto_ended
        self._timer = PeriodicTask("stale-session-check", interval_sec, self.check_and_end_stale_session)

    @property
    def is_running(self) -> bool:
        return self._timer.is_running

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()

    def is_stale(self) -> bool:
        session = self._machine.session
        if session is None:
            return False
        reference = session.last_set_end_time or session.start_time
        return is_session_inactive(reference, self._now(), self._threshold)

    async def check_and_end_stale_session(self) -> bool:
        if not self.is_stale():
            return False

        session = self._machine.session
        assert session is not None
        logger.info("Detected stale session %s on day %d, auto-ending", session.id, session.day_number)
        ended = await self._machine.end_workout(auto_completed=True)
        if ended and self._on_auto_ended is not None:
            await self._on_auto_ended()
        if ended and self._on_analytics_refresh is not None:
            await self._on_analytics_refresh()
        return ended

    async def run_startup_check(self) -> bool:
        try:
            return await self.check_and_end_stale_session()
        except Exception:
            logger.exception("Startup stale session check failed")
            return False
