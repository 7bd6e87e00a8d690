"""Pending sync operations queued while the server is unreachable."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Union

from liftsync.session.model import (
    CanonicalId,
    ProvisionalId,
    SessionId,
    is_valid_set,
    parse_session_id,
)


@dataclass(frozen=True)
class StartSession:
    local_session_id: ProvisionalId
    person: str | None
    day_number: int
    day_title: str | None
    muscle_groups: tuple[str, ...]
    is_demo: bool
    timestamp: str


@dataclass(frozen=True)
class RecordSet:
    session_id: SessionId
    exercise_name: str
    set_index: int
    start_time: str
    end_time: str
    weight: float
    reps: int
    note: str
    is_warmup: bool
    muscle_group: str | None
    timestamp: str

    @property
    def is_valid(self) -> bool:
        return is_valid_set(self.weight, self.reps)


@dataclass(frozen=True)
class EndSession:
    session_id: SessionId
    timestamp: str


PendingSyncOp = Union[StartSession, RecordSet, EndSession]


def op_session_id(op: PendingSyncOp) -> SessionId:
    if isinstance(op, StartSession):
        return op.local_session_id
    if isinstance(op, (RecordSet, EndSession)):
        return op.session_id
    raise TypeError(f"Unknown pending sync op: {op!r}")


def rebase_op(op: PendingSyncOp, provisional: ProvisionalId, canonical: CanonicalId) -> PendingSyncOp:
    """Point an op that references ``provisional`` at ``canonical`` instead."""
    if isinstance(op, (RecordSet, EndSession)) and op.session_id == provisional:
        return replace(op, session_id=canonical)
    return op


def op_to_dict(op: PendingSyncOp) -> dict[str, Any]:
    if isinstance(op, StartSession):
        return {
            "type": "startSession",
            "localSessionId": str(op.local_session_id),
            "data": {
                "person": op.person,
                "dayNumber": op.day_number,
                "dayTitle": op.day_title,
                "muscleGroups": list(op.muscle_groups),
                "isDemo": op.is_demo,
            },
            "timestamp": op.timestamp,
        }
    if isinstance(op, RecordSet):
        return {
            "type": "recordSet",
            "data": {
                "sessionId": str(op.session_id),
                "exerciseName": op.exercise_name,
                "muscleGroup": op.muscle_group,
                "setIndex": op.set_index,
                "startTime": op.start_time,
                "endTime": op.end_time,
                "weight": op.weight,
                "reps": op.reps,
                "note": op.note,
                "isWarmup": op.is_warmup,
            },
            "timestamp": op.timestamp,
        }
    if isinstance(op, EndSession):
        return {
            "type": "endSession",
            "data": {"sessionId": str(op.session_id)},
            "timestamp": op.timestamp,
        }
    raise TypeError(f"Unknown pending sync op: {op!r}")


def op_from_dict(raw: object) -> PendingSyncOp:
    if not isinstance(raw, dict):
        raise ValueError("Pending sync entry must be an object")
    kind = raw.get("type")
    data = raw.get("data") or {}
    timestamp = str(raw.get("timestamp") or "")

    if kind == "startSession":
        local_id = parse_session_id(raw.get("localSessionId"))
        if not isinstance(local_id, ProvisionalId):
            raise ValueError("startSession entry needs a provisional localSessionId")
        return StartSession(
            local_session_id=local_id,
            person=data.get("person"),
            day_number=int(data.get("dayNumber") or 0),
            day_title=data.get("dayTitle"),
            muscle_groups=tuple(data.get("muscleGroups") or ()),
            is_demo=bool(data.get("isDemo", False)),
            timestamp=timestamp,
        )

    session_id = parse_session_id(data.get("sessionId"))
    if kind == "recordSet":
        if session_id is None:
            raise ValueError("recordSet entry has no sessionId")
        exercise_name = data.get("exerciseName")
        if exercise_name is None and data.get("exerciseIndex") is not None:
            exercise_name = f"Exercise {data['exerciseIndex']}"
        return RecordSet(
            session_id=session_id,
            exercise_name=str(exercise_name or "Unknown Exercise"),
            set_index=int(data.get("setIndex") or 0),
            start_time=str(data.get("startTime") or ""),
            end_time=str(data.get("endTime") or ""),
            weight=float(data.get("weight") or 0),
            reps=int(data.get("reps") or 0),
            note=str(data.get("note") or ""),
            is_warmup=bool(data.get("isWarmup", False)),
            muscle_group=data.get("muscleGroup"),
            timestamp=timestamp,
        )
    if kind == "endSession":
        if session_id is None:
            raise ValueError("endSession entry has no sessionId")
        return EndSession(session_id=session_id, timestamp=timestamp)
    raise ValueError(f"Unknown pending sync type: {kind!r}")
