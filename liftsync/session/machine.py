"""Lifecycle of the device's single active workout session.

Every mutation is written through the store before the in-memory copy
changes. Remote failures never block the user: the mutation is queued for
the sync manager instead.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable

from liftsync.api.client import WorkoutApi
from liftsync.api.errors import ApiError, SessionGoneError
from liftsync.core.state import Preferences
from liftsync.session.day_completion import is_day_locked
from liftsync.session.model import (
    CanonicalId,
    CompletedDays,
    DayFlags,
    ProvisionalId,
    Session,
    SessionId,
    SetRecord,
    completed_days_from_dict,
    completed_days_to_dict,
    day_flags_from_dict,
    day_flags_to_dict,
    is_valid_set,
    new_provisional_id,
    parse_session_id,
)
from liftsync.session.timing import parse_timestamp
from liftsync.storage.keys import StorageKey
from liftsync.storage.store import KeyValueStore
from liftsync.sync.ops import EndSession, RecordSet, StartSession
from liftsync.sync.reconciler import SyncManager

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ACTIVE_SESSION_KEYS = (
    StorageKey.WORKOUT_START_TIME,
    StorageKey.WORKOUT_DAY,
    StorageKey.CURRENT_SESSION_ID,
    StorageKey.LAST_SET_END_TIME,
    StorageKey.LAST_ACTIVITY_TIME,
)


def local_now() -> datetime:
    return datetime.now().astimezone()


class SessionConflictError(RuntimeError):
    """A session is already active for another day."""


class SessionStateMachine:
    def __init__(
        self,
        store: KeyValueStore,
        api: WorkoutApi,
        sync: SyncManager,
        prefs: Preferences,
        user_id: str | None = None,
        *,
        clock: Clock = local_now,
        on_analytics_refresh: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._store = store
        self._api = api
        self._sync = sync
        self._prefs = prefs
        self._user_id = user_id
        self._now = clock
        self._on_analytics_refresh = on_analytics_refresh
        self._session: Session | None = None
        self._completed: CompletedDays = {}
        self._locked: DayFlags = {}
        self._overrides: DayFlags = {}

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def current_session_id(self) -> SessionId | None:
        return self._session.id if self._session else None

    @property
    def completed_days(self) -> CompletedDays:
        return self._completed

    @property
    def locked_days(self) -> DayFlags:
        return dict(self._locked)

    @property
    def unlocked_overrides(self) -> DayFlags:
        return dict(self._overrides)

    def has_active_session(self) -> bool:
        return self._session is not None and not self.is_day_locked(self._prefs.current_day)

    def is_day_locked(self, day_number: int) -> bool:
        return is_day_locked(self._locked, day_number, self._overrides)

    async def load(self) -> None:
        load = self._store.load
        self._completed = completed_days_from_dict(
            await load(StorageKey.COMPLETED_DAYS, self._user_id)
        )
        self._locked = day_flags_from_dict(await load(StorageKey.LOCKED_DAYS, self._user_id))
        self._overrides = day_flags_from_dict(
            await load(StorageKey.UNLOCKED_OVERRIDES, self._user_id)
        )

        start_time = parse_timestamp(await load(StorageKey.WORKOUT_START_TIME, self._user_id))
        session_id = parse_session_id(await load(StorageKey.CURRENT_SESSION_ID, self._user_id))
        if start_time is None or session_id is None:
            self._session = None
            return

        day = await load(StorageKey.WORKOUT_DAY, self._user_id)
        try:
            day_number = int(day) if day is not None else self._prefs.current_day
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable workout day %r", day)
            day_number = self._prefs.current_day
        last_activity = parse_timestamp(await load(StorageKey.LAST_ACTIVITY_TIME, self._user_id))
        self._session = Session(
            id=session_id,
            day_number=day_number,
            start_time=start_time,
            last_activity_time=last_activity or start_time,
            last_set_end_time=parse_timestamp(
                await load(StorageKey.LAST_SET_END_TIME, self._user_id)
            ),
        )
        logger.info("Restored active session %s for day %d", session_id, self._session.day_number)

    async def update_last_activity_time(self) -> None:
        if self._session is None:
            return
        now = self._now()
        await self._store.save(StorageKey.LAST_ACTIVITY_TIME, now.isoformat(), self._user_id)
        self._session.last_activity_time = now

    async def lock_day(self, day_number: int) -> None:
        if self._locked.get(day_number) and not self._overrides.get(day_number):
            return
        locked = {**self._locked, day_number: True}
        await self._store.save(StorageKey.LOCKED_DAYS, day_flags_to_dict(locked), self._user_id)
        self._locked = locked

        if day_number in self._overrides:
            overrides = {d: v for d, v in self._overrides.items() if d != day_number}
            await self._store.save(
                StorageKey.UNLOCKED_OVERRIDES, day_flags_to_dict(overrides), self._user_id
            )
            self._overrides = overrides

    async def unlock_day(self, day_number: int) -> None:
        await self.save_unlocked_overrides({**self._overrides, day_number: True})
        if day_number in self._locked:
            locked = {d: v for d, v in self._locked.items() if d != day_number}
            await self._store.save(StorageKey.LOCKED_DAYS, day_flags_to_dict(locked), self._user_id)
            self._locked = locked

    async def save_unlocked_overrides(self, overrides: DayFlags) -> None:
        """Store overrides and purge set data of every overridden day."""
        overrides = {d: True for d, flag in overrides.items() if flag}
        await self._store.save(
            StorageKey.UNLOCKED_OVERRIDES, day_flags_to_dict(overrides), self._user_id
        )
        self._overrides = overrides

        stale_days = [d for d in overrides if d in self._completed]
        if stale_days:
            completed = {d: ex for d, ex in self._completed.items() if d not in stale_days}
            await self._save_completed(completed)

    async def replace_history(self, completed: CompletedDays, locked: DayFlags) -> None:
        await self._save_completed(completed)
        await self._store.save(StorageKey.LOCKED_DAYS, day_flags_to_dict(locked), self._user_id)
        self._locked = dict(locked)

    async def reset_week(self) -> None:
        await self._save_completed({})
        await self._store.save(StorageKey.LOCKED_DAYS, {}, self._user_id)
        self._locked = {}

    async def clear_active_workout(self) -> None:
        logger.info("Clearing active workout session")
        await self._store.remove_many(ACTIVE_SESSION_KEYS, self._user_id)
        self._session = None

    def reset_state(self) -> None:
        self._session = None
        self._completed = {}
        self._locked = {}
        self._overrides = {}

    async def start_workout(self) -> SessionId | None:
        current_day = self._prefs.current_day
        if self._session is not None:
            if self._session.day_number == current_day:
                logger.info("Workout already started, reusing session %s", self._session.id)
                return self._session.id
            raise SessionConflictError(
                f"Session {self._session.id} is active for day {self._session.day_number}; "
                f"clear it before starting day {current_day}"
            )

        now = self._now()
        start_iso = now.isoformat()
        plan = self._prefs.workout_plan
        day = plan.find_day(current_day) if plan else None
        day_title = day.day_title if day else None
        muscle_groups = tuple(day.muscle_groups) if day else ()

        queued_start: StartSession | None = None
        try:
            session_id: SessionId = CanonicalId(
                await self._api.start_session(
                    self._prefs.selected_person,
                    current_day,
                    day_title,
                    list(muscle_groups),
                    self._prefs.is_demo_mode,
                    start_iso,
                )
            )
            logger.info("Session started on server with id %s", session_id)
        except ApiError as exc:
            session_id = new_provisional_id(now)
            logger.warning("Failed to start session on server, using %s: %s", session_id, exc)
            queued_start = StartSession(
                local_session_id=session_id,
                person=self._prefs.selected_person,
                day_number=current_day,
                day_title=day_title,
                muscle_groups=muscle_groups,
                is_demo=self._prefs.is_demo_mode,
                timestamp=start_iso,
            )

        await self._store.save(StorageKey.WORKOUT_START_TIME, start_iso, self._user_id)
        await self._store.save(StorageKey.WORKOUT_DAY, current_day, self._user_id)
        await self._store.save(StorageKey.CURRENT_SESSION_ID, str(session_id), self._user_id)
        await self._store.save(StorageKey.LAST_ACTIVITY_TIME, start_iso, self._user_id)
        await self._store.remove(StorageKey.LAST_SET_END_TIME, self._user_id)
        self._session = Session(
            id=session_id,
            day_number=current_day,
            start_time=now,
            last_activity_time=now,
        )

        if queued_start is not None:
            await self._sync.add_pending_sync(queued_start)
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
        if not is_valid_set(weight, reps):
            logger.debug("Ignoring set with weight=%s reps=%s", weight, reps)
            return False
        if self.is_day_locked(day_number):
            logger.warning("Day %d is locked, set not recorded", day_number)
            return False

        if self._session is None:
            logger.info("Starting new workout session for first set")
            await self.start_workout()
        session = self._session
        if session is None:
            return False

        now = self._now()
        end_iso = now.isoformat()
        set_start = (session.last_set_end_time or session.start_time).isoformat()

        plan = self._prefs.workout_plan
        exercise = (
            plan.find_exercise(day_number, self._prefs.selected_person, exercise_index)
            if plan
            else None
        )
        exercise_name = exercise.name if exercise and exercise.name else f"Exercise {exercise_index}"
        muscle_group = exercise.muscle_group if exercise else None

        record = SetRecord(
            weight=weight,
            reps=reps,
            completed_at=end_iso,
            note=note,
            is_warmup=is_warmup,
            exercise_name=exercise_name,
            muscle_group=muscle_group,
        )
        completed = {d: {e: dict(s) for e, s in ex.items()} for d, ex in self._completed.items()}
        completed.setdefault(day_number, {}).setdefault(exercise_index, {})[set_index] = record
        await self._save_completed(completed)

        await self._store.save(StorageKey.LAST_SET_END_TIME, end_iso, self._user_id)
        await self._store.save(StorageKey.LAST_ACTIVITY_TIME, end_iso, self._user_id)
        session.last_set_end_time = now
        session.last_activity_time = now

        op = RecordSet(
            session_id=session.id,
            exercise_name=exercise_name,
            set_index=set_index,
            start_time=set_start,
            end_time=end_iso,
            weight=weight,
            reps=reps,
            note=note,
            is_warmup=is_warmup,
            muscle_group=muscle_group,
            timestamp=end_iso,
        )
        if isinstance(session.id, ProvisionalId):
            await self._sync.add_pending_sync(op)
            return True

        try:
            await self._api.record_set(
                str(session.id),
                exercise_name,
                set_index,
                set_start,
                end_iso,
                weight,
                reps,
                note,
                is_warmup,
                muscle_group,
            )
            logger.debug("Set recorded on server for session %s", session.id)
        except ApiError as exc:
            logger.warning("Failed to record set on server, queued: %s", exc)
            await self._sync.add_pending_sync(op)
        return True

    async def delete_set_details(self, day_number: int, exercise_index: int, set_index: int) -> bool:
        """Remove a recorded set locally; True when there was one to remove."""
        sets = self._completed.get(day_number, {}).get(exercise_index, {})
        if set_index not in sets:
            return False

        completed = {d: {e: dict(s) for e, s in ex.items()} for d, ex in self._completed.items()}
        del completed[day_number][exercise_index][set_index]
        if not completed[day_number][exercise_index]:
            del completed[day_number][exercise_index]
        if not completed[day_number]:
            del completed[day_number]
        await self._save_completed(completed)
        return True

    async def end_workout(self, auto_completed: bool = False) -> bool:
        session = self._session
        if session is None:
            return False

        await self.lock_day(session.day_number)
        end_iso = self._now().isoformat()

        if isinstance(session.id, CanonicalId):
            try:
                await self._api.end_session(str(session.id), end_iso)
                logger.info("Session %s ended on server", session.id)
            except SessionGoneError as exc:
                logger.warning("Session %s does not exist on server, not queuing: %s", session.id, exc)
            except ApiError as exc:
                logger.warning("Failed to end session %s on server, queued: %s", session.id, exc)
                await self._sync.add_pending_sync(EndSession(session_id=session.id, timestamp=end_iso))
        else:
            logger.info("Local session %s will be ended once its start syncs", session.id)
            await self._sync.add_pending_sync(EndSession(session_id=session.id, timestamp=end_iso))

        await self.clear_active_workout()

        if not auto_completed and self._on_analytics_refresh is not None:
            await self._on_analytics_refresh()
        return True

    async def promote_session(self, provisional: ProvisionalId, canonical: CanonicalId) -> None:
        if self._session is None or self._session.id != provisional:
            return
        await self._store.save(StorageKey.CURRENT_SESSION_ID, str(canonical), self._user_id)
        self._session.id = canonical
        logger.info("Active session promoted %s -> %s", provisional, canonical)

    async def _save_completed(self, completed: CompletedDays) -> None:
        await self._store.save(
            StorageKey.COMPLETED_DAYS, completed_days_to_dict(completed), self._user_id
        )
        self._completed = completed
