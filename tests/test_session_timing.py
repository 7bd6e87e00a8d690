from __future__ import annotations

from datetime import timedelta

from fakes import T0

from liftsync.session.model import Exercise, PersonWorkout, SetRecord, WorkoutDay, WorkoutPlan
from liftsync.session.timing import (
    calculate_rest_time,
    calculate_session_average_rest,
    calculate_session_time,
    count_remaining_sets,
    format_time,
    get_estimated_end_time,
    get_estimated_time_remaining,
    get_session_statistics,
    is_session_inactive,
    parse_timestamp,
)


def _at(minutes: float) -> SetRecord:
    return SetRecord(weight=40, reps=8, completed_at=(T0 + timedelta(minutes=minutes)).isoformat())


def _plan() -> WorkoutPlan:
    return WorkoutPlan(
        days=(
            WorkoutDay(
                day_number=1,
                people={"Ana": PersonWorkout(exercises=(Exercise("Squat", 3), Exercise("Lunge", 2)))},
            ),
        )
    )


def test_parse_timestamp_tolerates_garbage() -> None:
    assert parse_timestamp(T0.isoformat()) == T0
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_inactivity_threshold_is_strict() -> None:
    assert not is_session_inactive(T0, T0 + timedelta(minutes=30))
    assert is_session_inactive(T0, T0 + timedelta(minutes=30, seconds=1))
    assert not is_session_inactive(None, T0)


def test_elapsed_and_rest_times() -> None:
    now = T0 + timedelta(minutes=5)
    assert calculate_session_time(T0, now) == 300
    assert calculate_rest_time(T0 + timedelta(minutes=4), now) == 60
    assert calculate_rest_time(None, now) == 0


def test_average_rest_ignores_outliers() -> None:
    completed = {1: {0: {0: _at(1), 1: _at(3), 2: _at(5)}, 1: {0: _at(60)}}}
    # 120s and 120s count, the 55 minute gap does not
    assert calculate_session_average_rest(completed, 1, T0) == 120
    assert calculate_session_average_rest({}, 1, T0, fallback_sec=90) == 90


def test_statistics_and_remaining_estimate() -> None:
    plan = _plan()
    completed = {1: {0: {0: _at(1), 1: _at(3)}}}
    now = T0 + timedelta(minutes=4)

    stats = get_session_statistics(
        start_time=T0,
        last_set_end_time=T0 + timedelta(minutes=3),
        completed=completed,
        day_number=1,
        plan=plan,
        person="Ana",
        time_between_sets=120,
        now=now,
    )
    assert stats is not None
    assert stats.completed_sets == 2
    assert stats.total_sets == 5
    assert stats.current_rest_sec == 60

    assert count_remaining_sets(plan, "Ana", 1, completed) == 3
    remaining = get_estimated_time_remaining(
        plan=plan,
        person="Ana",
        day_number=1,
        completed=completed,
        time_between_sets=100,
        start_time=None,
        session_average_rest=0,
        use_manual_time=False,
        server_average_rest=90,
    )
    assert remaining == 270
    assert get_estimated_end_time(remaining, now) == now + timedelta(seconds=270)


def test_manual_time_beats_server_average_without_a_session() -> None:
    remaining = get_estimated_time_remaining(
        plan=_plan(),
        person="Ana",
        day_number=1,
        completed={},
        time_between_sets=60,
        start_time=None,
        session_average_rest=0,
        use_manual_time=True,
        server_average_rest=200,
    )
    assert remaining == 300


def test_format_time() -> None:
    assert format_time(45) == "45s"
    assert format_time(120) == "2m"
    assert format_time(125) == "2m 5s"
    assert format_time(3900) == "1h 5m"
