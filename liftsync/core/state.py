"""User preferences shared by the engine components."""

from __future__ import annotations

from dataclasses import dataclass

from liftsync.session.model import WorkoutPlan

DEFAULT_TIME_BETWEEN_SETS = 120


@dataclass
class Preferences:
    workout_plan: WorkoutPlan | None = None
    selected_person: str | None = None
    current_day: int = 1
    time_between_sets: int = DEFAULT_TIME_BETWEEN_SETS
    use_manual_time: bool = False
    is_demo_mode: bool = False
    last_reset_date: str | None = None
