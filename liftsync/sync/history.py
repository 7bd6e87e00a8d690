"""Rebuild completed and locked days from the server's session history.

The server is authoritative for finished sessions. Days the user unlocked by
hand are left alone, and sets recorded locally during the active canonical
session survive until the server has them too.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from liftsync.session.model import CompletedDays, DayFlags, SetRecord, WorkoutPlan
from liftsync.session.timing import parse_timestamp

logger = logging.getLogger(__name__)

SERVER_SOURCE = "server"


def _epoch(raw: object) -> float:
    parsed = parse_timestamp(raw)
    return parsed.timestamp() if parsed is not None else 0.0


def _exercise_index(exercises: Iterable[Any], name: str | None, fallback: int) -> int:
    if not name:
        return fallback
    wanted = name.lower()
    for index, exercise in enumerate(exercises):
        if exercise.name.lower() == wanted:
            return index
    return fallback


def merge_server_history(
    sessions: Iterable[dict[str, Any]],
    *,
    plan: WorkoutPlan,
    person: str,
    locked: DayFlags,
    overrides: DayFlags,
    local_completed: CompletedDays,
    active_since: datetime | None = None,
) -> tuple[CompletedDays, DayFlags]:
    """Return ``(completed, locked)`` rebuilt from full server sessions.

    Every ended session locks its day unless the day is overridden. Set
    timings are mapped onto the plan by exercise name (case-insensitive),
    falling back to their position, and the newest ``end_time`` wins per
    slot. ``active_since`` is the start of the active canonical session:
    local sets completed at or after it fill slots the server did not return.
    """
    completed: CompletedDays = {}
    new_locked: DayFlags = dict(locked)

    for session in sessions:
        try:
            day_number = int(session["day_number"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping server session without a day number: %r", session.get("id"))
            continue

        if overrides.get(day_number):
            logger.debug("Skipping set sync for unlocked day %d", day_number)
            continue
        if session.get("end_time"):
            new_locked[day_number] = True

        timings = session.get("set_timings") or []
        day = plan.find_day(day_number)
        workout = day.people.get(person) if day is not None else None
        if not timings or workout is None or not workout.exercises:
            continue

        day_sets = completed.setdefault(day_number, {})
        for fallback, timing in enumerate(timings):
            if not isinstance(timing, dict) or timing.get("set_index") is None:
                continue
            name = timing.get("exercise_name")
            exercise_index = _exercise_index(workout.exercises, name, fallback)
            set_index = int(timing["set_index"])
            slot = day_sets.setdefault(exercise_index, {})
            existing = slot.get(set_index)
            if existing is not None and _epoch(timing.get("end_time")) <= _epoch(existing.completed_at):
                continue
            slot[set_index] = SetRecord(
                weight=float(timing.get("weight") or 0),
                reps=int(timing.get("reps") or 0),
                completed_at=str(timing.get("end_time") or ""),
                note=str(timing.get("note") or ""),
                is_warmup=bool(timing.get("is_warmup", False)),
                exercise_name=name,
                source=SERVER_SOURCE,
            )

    if active_since is not None:
        since = active_since.timestamp()
        for day_number, exercises in local_completed.items():
            if overrides.get(day_number):
                continue
            for exercise_index, sets in exercises.items():
                for set_index, record in sets.items():
                    if _epoch(record.completed_at) < since:
                        continue
                    slot = completed.setdefault(day_number, {}).setdefault(exercise_index, {})
                    slot.setdefault(set_index, record)

    return completed, new_locked
