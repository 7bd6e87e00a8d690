"""The constructed service object that owns every sync component for one user.

Build one ``WorkoutEngine`` per signed-in user, ``await load()`` it, then
``start()`` the background tasks. ``close()`` tears everything down.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Callable

from liftsync.api.client import ServerAnalytics, WorkoutApi
from liftsync.api.errors import ApiError
from liftsync.core.config import Settings
from liftsync.core.state import DEFAULT_TIME_BETWEEN_SETS, Preferences
from liftsync.joint.coordinator import JointSessionCoordinator
from liftsync.monitor.stale import StaleSessionMonitor
from liftsync.monitor.weekly_reset import WeeklyResetScheduler
from liftsync.realtime import messages as msg
from liftsync.realtime.backoff import ReconnectBackoff
from liftsync.realtime.messages import Message
from liftsync.realtime.transport import Connector, RealtimeTransport
from liftsync.session.machine import Clock, SessionStateMachine, local_now
from liftsync.session.model import (
    CanonicalId,
    CompletedDays,
    DayFlags,
    ProvisionalId,
    SessionId,
    WorkoutPlan,
)
from liftsync.storage.keys import StorageKey
from liftsync.storage.store import KeyValueStore
from liftsync.sync.history import merge_server_history
from liftsync.sync.reconciler import SyncManager

logger = logging.getLogger(__name__)


def _stored_int(raw: Any, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable stored number %r", raw)
        return default


class WorkoutEngine:
    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        api: WorkoutApi,
        user_id: str | None = None,
        token: str | None = None,
        *,
        clock: Clock = local_now,
        today: Callable[[], date] = date.today,
        connector: Connector | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.api = api
        self.user_id = user_id
        self.prefs = Preferences(time_between_sets=settings.default_rest_sec)
        self.server_analytics: ServerAnalytics | None = None

        self.transport = RealtimeTransport(
            settings.ws_url(token) if token and user_id else None,
            connector=connector,
            backoff=ReconnectBackoff(
                settings.reconnect_base_sec,
                settings.reconnect_max_sec,
                settings.reconnect_jitter,
            ),
        )
        self.sync = SyncManager(
            store,
            api,
            user_id,
            on_session_promoted=self._on_session_promoted,
            on_queue_drained=self._refresh_analytics,
            is_online=lambda: self.transport.connected,
            interval_sec=settings.sync_interval_sec,
        )
        self.machine = SessionStateMachine(
            store,
            api,
            self.sync,
            self.prefs,
            user_id,
            clock=clock,
            on_analytics_refresh=self._refresh_analytics,
        )
        self.monitor = StaleSessionMonitor(
            self.machine,
            clock=clock,
            threshold=timedelta(minutes=settings.inactivity_threshold_min),
            interval_sec=settings.stale_check_interval_sec,
            on_analytics_refresh=self._refresh_analytics,
            on_auto_ended=self._after_workout_ended,
        )
        self.weekly_reset = WeeklyResetScheduler(store, self.machine, self.prefs, user_id, today=today)
        self.joint = JointSessionCoordinator(
            self.transport,
            api,
            user_id,
            current_session_id=self._current_session_id,
            exercise_names=self._my_exercise_names,
        )
        self.transport.add_listener(self._route_message)

    # -- lifecycle --------------------------------------------------------

    async def load(self) -> None:
        """Restore persisted state, then run the weekly reset and cleanup passes."""
        await self._load_preferences()
        await self.machine.load()
        await self.sync.load()
        logger.info(
            "Loaded state for user %s: day %d, %d pending syncs",
            self.user_id or "<anonymous>",
            self.prefs.current_day,
            len(self.sync.pending),
        )

        await self.weekly_reset.check_on_load()
        if self.sync.pending:
            await self.sync.cleanup_invalid_syncs()
        await self.monitor.run_startup_check()

    def start(self) -> None:
        self.sync.start()
        self.monitor.start()
        self.transport.start()

    async def close(self) -> None:
        await self.monitor.stop()
        await self.sync.stop()
        await self.transport.stop()
        await self.api.aclose()

    async def on_background(self) -> None:
        await self.transport.on_background()

    async def on_foreground(self) -> None:
        self.transport.on_foreground()
        await self.monitor.check_and_end_stale_session()

    # -- workout ----------------------------------------------------------

    async def start_workout(self) -> SessionId | None:
        session_id = await self.machine.start_workout()
        if session_id is not None:
            await self.transport.send({"type": msg.SESSION_STARTED, "sessionId": str(session_id)})
        return session_id

    async def record_set(
        self,
        day_number: int,
        exercise_index: int,
        set_index: int,
        weight: float,
        reps: int,
        note: str = "",
        is_warmup: bool = False,
    ) -> bool:
        had_session = self.machine.session is not None
        recorded = await self.machine.record_set(
            day_number, exercise_index, set_index, weight, reps, note, is_warmup
        )
        session_id = self.machine.current_session_id
        if recorded and not had_session and session_id is not None:
            await self.transport.send({"type": msg.SESSION_STARTED, "sessionId": str(session_id)})
        return recorded

    async def end_workout(self) -> bool:
        ended = await self.machine.end_workout()
        if ended:
            await self._after_workout_ended()
        return ended

    async def fetch_analytics(self) -> ServerAnalytics | None:
        """Pull the server's rest average unless the user set a manual rest time."""
        if self.prefs.use_manual_time or not self.prefs.selected_person:
            return None
        try:
            analytics = await self.api.get_analytics(self.prefs.selected_person, self.prefs.current_day)
        except ApiError as exc:
            logger.error("Error fetching analytics: %s", exc)
            return None

        self.server_analytics = analytics
        average = int(round(analytics.average_time_between_sets))
        if average > 0 and not self.prefs.use_manual_time:
            await self.store.save(StorageKey.TIME_BETWEEN_SETS, average, self.user_id)
            self.prefs.time_between_sets = average
        return analytics

    async def sync_from_server(self) -> CompletedDays | None:
        """Replace completed and locked days with what the server has recorded."""
        person = self.prefs.selected_person
        plan = self.prefs.workout_plan
        if not self.user_id or not person or plan is None or not plan.days:
            return None

        logger.info("Syncing completed days from server")
        summaries = await self.api.get_session_history(person, limit=100)
        if not summaries:
            logger.info("No server sessions found")
            return None

        sessions: list[dict[str, Any]] = []
        for summary in summaries:
            session_id = summary.get("id")
            if session_id is None:
                continue
            try:
                sessions.append(await self.api.get_session(str(session_id)))
            except ApiError as exc:
                logger.warning("Failed to fetch session %s: %s", session_id, exc)

        active = self.machine.session
        completed, locked = merge_server_history(
            sessions,
            plan=plan,
            person=person,
            locked=self.machine.locked_days,
            overrides=self.machine.unlocked_overrides,
            local_completed=self.machine.completed_days,
            active_since=active.start_time if active is not None and not active.is_provisional else None,
        )
        await self.machine.replace_history(completed, locked)
        logger.info("Server sync complete: %d days with sets, %d days locked", len(completed), len(locked))
        return completed

    # -- preferences ------------------------------------------------------

    async def save_workout_data(self, plan: WorkoutPlan) -> None:
        await self.store.save(StorageKey.WORKOUT_DATA, plan.to_dict(), self.user_id)
        self.prefs.workout_plan = plan

    async def select_person(self, person: str | None) -> None:
        await self.store.save(StorageKey.SELECTED_PERSON, person, self.user_id)
        self.prefs.selected_person = person
        await self.fetch_analytics()

    async def select_day(self, day_number: int) -> None:
        session = self.machine.session
        if session is not None and session.day_number != day_number:
            logger.info("Switching from day %d to %d, clearing active workout", session.day_number, day_number)
            await self.machine.clear_active_workout()
            await self.joint.on_workout_ended()
        await self.store.save(StorageKey.CURRENT_DAY, day_number, self.user_id)
        self.prefs.current_day = day_number
        await self.fetch_analytics()

    async def save_time_between_sets(self, seconds: int) -> None:
        await self.store.save(StorageKey.TIME_BETWEEN_SETS, seconds, self.user_id)
        self.prefs.time_between_sets = seconds

    async def toggle_manual_time(self, enabled: bool) -> None:
        await self.store.save(StorageKey.USE_MANUAL_TIME, enabled, self.user_id)
        self.prefs.use_manual_time = enabled
        if not enabled:
            await self.fetch_analytics()

    async def toggle_demo_mode(self, enabled: bool) -> None:
        await self.store.save(StorageKey.IS_DEMO_MODE, enabled, self.user_id)
        self.prefs.is_demo_mode = enabled
        if not enabled:
            try:
                await self.api.clear_demo_sessions()
            except ApiError as exc:
                logger.error("Failed to clear demo sessions (offline): %s", exc)

    async def save_unlocked_overrides(self, overrides: DayFlags) -> None:
        await self.machine.save_unlocked_overrides(overrides)

    async def clear_all_data(self) -> None:
        logger.info("Clearing all stored data for user %s", self.user_id or "<anonymous>")
        await self.store.remove_many(list(StorageKey), self.user_id)
        await self.sync.clear()
        await self.joint.on_workout_ended()
        self.machine.reset_state()
        fresh = Preferences(time_between_sets=self.settings.default_rest_sec)
        for name, value in vars(fresh).items():
            setattr(self.prefs, name, value)
        self.server_analytics = None

    # -- internals --------------------------------------------------------

    async def _load_preferences(self) -> None:
        load = self.store.load
        raw_plan = await load(StorageKey.WORKOUT_DATA, self.user_id)
        if raw_plan is not None:
            try:
                self.prefs.workout_plan = WorkoutPlan.from_dict(raw_plan)
            except (TypeError, ValueError) as exc:
                logger.warning("Ignoring unreadable workout data: %s", exc)

        self.prefs.selected_person = await load(StorageKey.SELECTED_PERSON, self.user_id)
        self.prefs.current_day = _stored_int(await load(StorageKey.CURRENT_DAY, self.user_id), 1) or 1
        default_rest = self.settings.default_rest_sec or DEFAULT_TIME_BETWEEN_SETS
        self.prefs.time_between_sets = _stored_int(
            await load(StorageKey.TIME_BETWEEN_SETS, self.user_id), default_rest
        )
        self.prefs.use_manual_time = bool(await load(StorageKey.USE_MANUAL_TIME, self.user_id, default=False))
        self.prefs.is_demo_mode = bool(await load(StorageKey.IS_DEMO_MODE, self.user_id, default=False))
        self.prefs.last_reset_date = await load(StorageKey.LAST_RESET_DATE, self.user_id)

    async def _refresh_analytics(self) -> None:
        await self.fetch_analytics()

    async def _after_workout_ended(self) -> None:
        await self.joint.on_workout_ended()
        await self.transport.send({"type": msg.SESSION_ENDED})

    async def _on_session_promoted(self, provisional: ProvisionalId, canonical: CanonicalId) -> None:
        await self.machine.promote_session(provisional, canonical)

    def _current_session_id(self) -> str | None:
        session_id = self.machine.current_session_id
        return str(session_id) if session_id is not None else None

    def _my_exercise_names(self) -> list[dict[str, Any]]:
        plan = self.prefs.workout_plan
        day = plan.find_day(self.prefs.current_day) if plan else None
        person = self.prefs.selected_person
        if day is None or person is None or person not in day.people:
            return []
        return [{"name": e.name, "sets": e.sets} for e in day.people[person].exercises if e.name]

    async def _route_message(self, message: Message) -> None:
        await self.joint.handle_message(message)
