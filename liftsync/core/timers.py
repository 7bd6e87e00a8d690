"""Periodic background tasks driven by the asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[object]]


class PeriodicTask:
    """Runs ``callback`` every ``interval_sec`` until stopped.

    Exceptions raised by a tick are logged and the next tick still runs.
    """

    def __init__(self, name: str, interval_sec: float, callback: TickCallback) -> None:
        self.name = name
        self.interval_sec = interval_sec
        self._callback = callback
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        if not self.is_running:
            self._task = None
            return
        self._stop_event.set()
        assert self._task is not None
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_sec)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self._callback()
            except Exception:
                logger.exception("Periodic task %s failed", self.name)
