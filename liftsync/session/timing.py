"""Session timing, rest statistics and remaining-time estimates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from liftsync.session.day_completion import get_exercise_completed_sets
from liftsync.session.model import CompletedDays, WorkoutPlan

INACTIVITY_THRESHOLD = timedelta(minutes=30)
MIN_COUNTED_REST_SEC = 10
MAX_COUNTED_REST_SEC = 1200


def parse_timestamp(raw: object) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    try:
        text = str(raw)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def is_session_inactive(
    reference: datetime | None,
    now: datetime,
    threshold: timedelta = INACTIVITY_THRESHOLD,
) -> bool:
    if reference is None:
        return False
    return now - reference > threshold


def calculate_session_time(start_time: datetime | None, now: datetime) -> int:
    if start_time is None:
        return 0
    return int((now - start_time).total_seconds())


def calculate_rest_time(last_set_end_time: datetime | None, now: datetime) -> int:
    if last_set_end_time is None:
        return 0
    return int((now - last_set_end_time).total_seconds())


def calculate_session_average_rest(
    completed: CompletedDays,
    day_number: int,
    start_time: datetime | None,
    fallback_sec: int = 120,
) -> int:
    day_data = completed.get(day_number)
    if start_time is None or not day_data:
        return fallback_sec

    set_times: list[datetime] = []
    for sets in day_data.values():
        for record in sets.values():
            finished = parse_timestamp(record.completed_at)
            if finished is not None and finished >= start_time:
                set_times.append(finished)
    set_times.sort()

    rests = [
        int((later - earlier).total_seconds())
        for earlier, later in zip(set_times, set_times[1:])
    ]
    rests = [r for r in rests if MIN_COUNTED_REST_SEC <= r <= MAX_COUNTED_REST_SEC]
    if not rests:
        return fallback_sec
    return round(sum(rests) / len(rests))


def count_completed_sets(completed: CompletedDays, day_number: int) -> int:
    return sum(len(sets) for sets in completed.get(day_number, {}).values())


@dataclass(frozen=True)
class SessionStatistics:
    total_time_sec: int
    average_rest_sec: int
    current_rest_sec: int
    completed_sets: int
    total_sets: int


def get_session_statistics(
    *,
    start_time: datetime | None,
    last_set_end_time: datetime | None,
    completed: CompletedDays,
    day_number: int,
    plan: WorkoutPlan | None,
    person: str | None,
    time_between_sets: int,
    now: datetime,
) -> SessionStatistics | None:
    if start_time is None:
        return None

    total_sets = 0
    if plan is not None and person is not None:
        day = plan.find_day(day_number)
        if day is not None and person in day.people:
            total_sets = day.people[person].total_sets

    return SessionStatistics(
        total_time_sec=calculate_session_time(start_time, now),
        average_rest_sec=calculate_session_average_rest(
            completed, day_number, start_time, time_between_sets
        ),
        current_rest_sec=calculate_rest_time(last_set_end_time, now),
        completed_sets=count_completed_sets(completed, day_number),
        total_sets=total_sets,
    )


def count_remaining_sets(
    plan: WorkoutPlan | None, person: str | None, day_number: int, completed: CompletedDays
) -> int:
    if plan is None or person is None:
        return 0
    day = plan.find_day(day_number)
    if day is None or person not in day.people:
        return 0
    return sum(
        max(0, exercise.sets - get_exercise_completed_sets(completed, day_number, i))
        for i, exercise in enumerate(day.people[person].exercises)
    )


def get_estimated_time_remaining(
    *,
    plan: WorkoutPlan | None,
    person: str | None,
    day_number: int,
    completed: CompletedDays,
    time_between_sets: int,
    start_time: datetime | None,
    session_average_rest: int,
    use_manual_time: bool,
    server_average_rest: float | None,
) -> int:
    remaining = count_remaining_sets(plan, person, day_number, completed)

    per_set = float(time_between_sets)
    if start_time is not None and session_average_rest > 0:
        per_set = float(session_average_rest)
    elif not use_manual_time and server_average_rest and server_average_rest > 0:
        per_set = float(server_average_rest)
    return int(remaining * per_set)


def get_estimated_end_time(remaining_sec: int, now: datetime) -> datetime:
    return now + timedelta(seconds=remaining_sec)


def format_time(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    minutes, rest = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {rest}s" if rest else f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"
