from __future__ import annotations

import asyncio
from datetime import date

from fakes import FakeApi, FakeClock

from liftsync.core.state import Preferences
from liftsync.monitor.weekly_reset import WeeklyResetScheduler
from liftsync.session.machine import SessionStateMachine
from liftsync.storage.keys import StorageKey
from liftsync.storage.store import MemoryStore
from liftsync.sync.reconciler import SyncManager


def _build(today: date, last_reset: str | None):
    store = MemoryStore()
    api = FakeApi()
    prefs = Preferences(last_reset_date=last_reset)
    machine = SessionStateMachine(store, api, SyncManager(store, api, "u1"), prefs, "u1", clock=FakeClock())
    scheduler = WeeklyResetScheduler(store, machine, prefs, "u1", today=lambda: today)
    return scheduler, machine, store, prefs


def test_thursday_never_resets() -> None:
    async def _run() -> None:
        scheduler, machine, _, _ = _build(date(2026, 3, 5), "2026-02-09")
        await machine.record_set(1, 0, 0, 50, 10)
        await machine.end_workout()

        assert await scheduler.check_on_load() is None
        assert machine.is_day_locked(1)
        assert machine.completed_days

    asyncio.run(_run())


def test_monday_resets_exactly_once() -> None:
    async def _run() -> None:
        scheduler, machine, store, prefs = _build(date(2026, 3, 9), "2026-02-09")
        await machine.record_set(1, 0, 0, 50, 10)
        await machine.end_workout()

        assert await scheduler.check_on_load() == "2026-03-09"
        assert machine.completed_days == {}
        assert machine.locked_days == {}
        assert prefs.last_reset_date == "2026-03-09"
        assert await store.load(StorageKey.LAST_RESET_DATE, "u1") == "2026-03-09"

        await machine.lock_day(2)
        assert await scheduler.check_on_load() is None
        assert machine.is_day_locked(2)

    asyncio.run(_run())
