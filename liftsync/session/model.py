"""Workout session domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

LOCAL_SESSION_PREFIX = "local_"


@dataclass(frozen=True)
class ProvisionalId:
    """Locally generated id for a session the server has not acknowledged."""

    local_id: str

    def __str__(self) -> str:
        return self.local_id


@dataclass(frozen=True)
class CanonicalId:
    server_id: str

    def __str__(self) -> str:
        return self.server_id


SessionId = Union[ProvisionalId, CanonicalId]


def new_provisional_id(now: datetime) -> ProvisionalId:
    return ProvisionalId(f"{LOCAL_SESSION_PREFIX}{int(now.timestamp() * 1000)}")


def parse_session_id(raw: object) -> SessionId | None:
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if text.startswith(LOCAL_SESSION_PREFIX):
        return ProvisionalId(text)
    return CanonicalId(text)


def is_valid_set(weight: float | None, reps: int | None) -> bool:
    return bool(weight) and weight > 0 and bool(reps) and reps >= 1


@dataclass
class Session:
    id: SessionId
    day_number: int
    start_time: datetime
    last_activity_time: datetime
    last_set_end_time: datetime | None = None

    @property
    def is_provisional(self) -> bool:
        return isinstance(self.id, ProvisionalId)


@dataclass(frozen=True)
class SetRecord:
    weight: float
    reps: int
    completed_at: str
    note: str = ""
    is_warmup: bool = False
    exercise_name: str | None = None
    muscle_group: str | None = None
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "weight": self.weight,
            "reps": self.reps,
            "completedAt": self.completed_at,
            "note": self.note,
            "isWarmup": self.is_warmup,
        }
        if self.exercise_name is not None:
            payload["exerciseName"] = self.exercise_name
        if self.muscle_group is not None:
            payload["muscleGroup"] = self.muscle_group
        if self.source is not None:
            payload["source"] = self.source
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SetRecord:
        return cls(
            weight=float(data.get("weight") or 0),
            reps=int(data.get("reps") or 0),
            completed_at=str(data.get("completedAt", "")),
            note=str(data.get("note") or ""),
            is_warmup=bool(data.get("isWarmup", False)),
            exercise_name=data.get("exerciseName"),
            muscle_group=data.get("muscleGroup"),
            source=data.get("source"),
        )


# day number -> exercise index -> set index -> record
CompletedDays = dict[int, dict[int, dict[int, SetRecord]]]
DayFlags = dict[int, bool]


def completed_days_to_dict(completed: CompletedDays) -> dict[str, Any]:
    return {
        str(day): {
            str(ex): {str(idx): record.to_dict() for idx, record in sets.items()}
            for ex, sets in exercises.items()
        }
        for day, exercises in completed.items()
    }


def completed_days_from_dict(data: object) -> CompletedDays:
    if not isinstance(data, dict):
        return {}
    out: CompletedDays = {}
    for day, exercises in data.items():
        if not isinstance(exercises, dict):
            continue
        day_out: dict[int, dict[int, SetRecord]] = {}
        for ex, sets in exercises.items():
            if not isinstance(sets, dict):
                continue
            day_out[int(ex)] = {
                int(idx): SetRecord.from_dict(raw)
                for idx, raw in sets.items()
                if isinstance(raw, dict)
            }
        out[int(day)] = day_out
    return out


def day_flags_from_dict(data: object) -> DayFlags:
    if not isinstance(data, dict):
        return {}
    return {int(day): bool(flag) for day, flag in data.items() if flag}


def day_flags_to_dict(flags: DayFlags) -> dict[str, bool]:
    return {str(day): flag for day, flag in flags.items()}


@dataclass(frozen=True)
class Exercise:
    name: str
    sets: int
    muscle_group: str | None = None


@dataclass(frozen=True)
class PersonWorkout:
    exercises: tuple[Exercise, ...]

    @property
    def total_sets(self) -> int:
        return sum(exercise.sets for exercise in self.exercises)


@dataclass(frozen=True)
class WorkoutDay:
    day_number: int
    day_title: str | None = None
    muscle_groups: tuple[str, ...] = ()
    people: dict[str, PersonWorkout] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkoutPlan:
    days: tuple[WorkoutDay, ...]

    def find_day(self, day_number: int) -> WorkoutDay | None:
        for day in self.days:
            if day.day_number == day_number:
                return day
        return None

    def find_exercise(
        self, day_number: int, person: str | None, exercise_index: int
    ) -> Exercise | None:
        day = self.find_day(day_number)
        if day is None or person is None:
            return None
        workout = day.people.get(person)
        if workout is None or not 0 <= exercise_index < len(workout.exercises):
            return None
        return workout.exercises[exercise_index]

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": [
                {
                    "dayNumber": day.day_number,
                    "dayTitle": day.day_title,
                    "muscleGroups": list(day.muscle_groups),
                    "people": {
                        person: {
                            "exercises": [
                                {
                                    "name": exercise.name,
                                    "sets": exercise.sets,
                                    "muscleGroup": exercise.muscle_group,
                                }
                                for exercise in workout.exercises
                            ],
                            "totalSets": workout.total_sets,
                        }
                        for person, workout in day.people.items()
                    },
                }
                for day in self.days
            ]
        }

    @classmethod
    def from_dict(cls, data: object) -> WorkoutPlan:
        if not isinstance(data, dict):
            raise ValueError("Workout data must be an object")
        days_obj = data.get("days")
        if not isinstance(days_obj, list):
            raise ValueError("Workout field 'days' must be an array")

        days: list[WorkoutDay] = []
        for i, raw_day in enumerate(days_obj):
            if not isinstance(raw_day, dict):
                raise ValueError(f"Day {i + 1}: must be an object")
            people: dict[str, PersonWorkout] = {}
            for person, raw_workout in (raw_day.get("people") or {}).items():
                exercises = tuple(
                    Exercise(
                        name=str(raw.get("name", "")).strip(),
                        sets=int(raw.get("sets") or 0),
                        muscle_group=raw.get("muscleGroup"),
                    )
                    for raw in (raw_workout or {}).get("exercises") or []
                    if isinstance(raw, dict)
                )
                people[str(person)] = PersonWorkout(exercises=exercises)
            days.append(
                WorkoutDay(
                    day_number=int(raw_day.get("dayNumber", i + 1)),
                    day_title=raw_day.get("dayTitle"),
                    muscle_groups=tuple(raw_day.get("muscleGroups") or ()),
                    people=people,
                )
            )
        return cls(days=tuple(days))
