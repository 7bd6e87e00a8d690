"""Storage keys for per-user persisted state."""

from __future__ import annotations

from enum import Enum


class StorageKey(str, Enum):
    WORKOUT_DATA = "workoutData"
    SELECTED_PERSON = "selectedPerson"
    CURRENT_DAY = "currentDay"
    COMPLETED_DAYS = "completedDays"
    LOCKED_DAYS = "lockedDays"
    UNLOCKED_OVERRIDES = "unlockedOverrides"
    LAST_RESET_DATE = "lastResetDate"
    TIME_BETWEEN_SETS = "timeBetweenSets"
    WORKOUT_START_TIME = "workoutStartTime"
    WORKOUT_DAY = "workoutDay"
    CURRENT_SESSION_ID = "currentSessionId"
    LAST_SET_END_TIME = "lastSetEndTime"
    LAST_ACTIVITY_TIME = "lastActivityTime"
    IS_DEMO_MODE = "isDemoMode"
    USE_MANUAL_TIME = "useManualTime"
    PENDING_SYNCS = "pendingSyncs"


def user_key(key: StorageKey | str, user_id: str | None) -> str:
    raw = key.value if isinstance(key, StorageKey) else key
    if not user_id:
        return raw
    return f"{raw}_user_{user_id}"
