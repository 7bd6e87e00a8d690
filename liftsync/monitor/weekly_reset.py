"""Clears day progress once per week, on Monday."""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable

from liftsync.core.state import Preferences
from liftsync.session.day_completion import should_reset_for_monday
from liftsync.session.machine import SessionStateMachine
from liftsync.storage.keys import StorageKey
from liftsync.storage.store import KeyValueStore

logger = logging.getLogger(__name__)


class WeeklyResetScheduler:
    def __init__(
        self,
        store: KeyValueStore,
        machine: SessionStateMachine,
        prefs: Preferences,
        user_id: str | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._machine = machine
        self._prefs = prefs
        self._user_id = user_id
        self._today = today

    async def check_on_load(self) -> str | None:
        """Run the reset if due; returns the new reset date when it fired."""
        try:
            monday = should_reset_for_monday(self._prefs.last_reset_date, self._today())
            if monday is None:
                return None

            logger.info("Resetting completed and locked days for week of %s", monday)
            await self._machine.reset_week()
            await self._store.save(StorageKey.LAST_RESET_DATE, monday, self._user_id)
            self._prefs.last_reset_date = monday
            return monday
        except Exception:
            logger.exception("Weekly reset check failed")
            return None
