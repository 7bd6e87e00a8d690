"""Day completion checks and the weekly reset rule."""

from __future__ import annotations

from datetime import date, timedelta

from liftsync.session.model import CompletedDays, DayFlags, SetRecord, WorkoutPlan


def is_set_complete(
    completed: CompletedDays, day_number: int, exercise_index: int, set_index: int
) -> bool:
    return get_set_details(completed, day_number, exercise_index, set_index) is not None


def get_set_details(
    completed: CompletedDays, day_number: int, exercise_index: int, set_index: int
) -> SetRecord | None:
    return completed.get(day_number, {}).get(exercise_index, {}).get(set_index)


def get_exercise_completed_sets(
    completed: CompletedDays, day_number: int, exercise_index: int
) -> int:
    return len(completed.get(day_number, {}).get(exercise_index, {}))


def are_all_exercises_complete(
    plan: WorkoutPlan | None,
    person: str | None,
    day_number: int,
    completed: CompletedDays,
) -> bool:
    if plan is None or person is None:
        return False
    day = plan.find_day(day_number)
    if day is None or person not in day.people:
        return False
    exercises = day.people[person].exercises
    if not exercises:
        return False
    return all(
        get_exercise_completed_sets(completed, day_number, i) >= exercise.sets
        for i, exercise in enumerate(exercises)
    )


def is_day_locked(
    locked: DayFlags, day_number: int, overrides: DayFlags | None = None
) -> bool:
    if overrides and overrides.get(day_number):
        return False
    return bool(locked.get(day_number))


def is_day_complete(
    locked: DayFlags,
    day_number: int,
    plan: WorkoutPlan | None,
    person: str | None,
    completed: CompletedDays,
) -> bool:
    if locked.get(day_number):
        return True
    return are_all_exercises_complete(plan, person, day_number, completed)


def monday_of_week(today: date) -> date:
    return today - timedelta(days=today.weekday())


def should_reset_for_monday(last_reset_date: str | None, today: date | None = None) -> str | None:
    """Return this Monday's ISO date when a weekly reset is due, else None.

    A reset fires only on the Monday itself and only if nothing was recorded
    since that Monday, so a reset never wipes progress mid-week.
    """
    current = today or date.today()
    this_monday = monday_of_week(current).isoformat()
    if last_reset_date and last_reset_date >= this_monday:
        return None
    if current.weekday() != 0:
        return None
    return this_monday
