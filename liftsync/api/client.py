"""Async REST client for the workout server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from liftsync.api.errors import (
    ApiError,
    RemoteUnavailableError,
    SessionExpiredError,
    SessionGoneError,
)

logger = logging.getLogger(__name__)

DEFAULT_REST_SEC = 120


@dataclass(frozen=True)
class ServerAnalytics:
    average_time_between_sets: float = DEFAULT_REST_SEC
    total_sessions: int = 0
    total_sets_completed: int = 0
    total_volume: float = 0.0
    average_rest_time: float = 0.0
    average_set_duration: float = 0.0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ServerAnalytics:
        return cls(
            average_time_between_sets=data.get("averageTimeBetweenSets") or DEFAULT_REST_SEC,
            total_sessions=data.get("totalSessions") or 0,
            total_sets_completed=data.get("totalSetsCompleted") or 0,
            total_volume=data.get("totalVolume") or 0.0,
            average_rest_time=data.get("averageRestTime") or 0.0,
            average_set_duration=data.get("averageSetDuration") or 0.0,
        )


class WorkoutApi:
    """Thin wrapper over the session, analytics and sharing endpoints.

    Non-2xx answers are mapped onto the ``liftsync.api.errors`` hierarchy so
    callers can tell a gone session apart from a transient failure.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def start_session(
        self,
        person: str | None,
        day_number: int,
        day_title: str | None,
        muscle_groups: list[str],
        is_demo: bool = False,
        start_time: str | None = None,
    ) -> str:
        data = await self._request(
            "POST",
            "/api/sessions/start",
            json={
                "person": person,
                "dayNumber": day_number,
                "dayTitle": day_title,
                "muscleGroups": muscle_groups,
                "isDemo": is_demo,
                "startTime": start_time,
            },
            action="start session",
        )
        try:
            return str(data["session"]["id"])
        except (KeyError, TypeError) as exc:
            raise ApiError("Malformed start session response") from exc

    async def record_set(
        self,
        session_id: str,
        exercise_name: str,
        set_index: int,
        start_time: str,
        end_time: str,
        weight: float,
        reps: int,
        note: str = "",
        is_warmup: bool = False,
        muscle_group: str | None = None,
    ) -> Any:
        data = await self._request(
            "POST",
            f"/api/sessions/{session_id}/set",
            json={
                "exerciseName": exercise_name,
                "setIndex": set_index,
                "startTime": start_time,
                "endTime": end_time,
                "weight": weight,
                "reps": reps,
                "note": note,
                "isWarmup": is_warmup,
                "muscleGroup": muscle_group,
            },
            action="record set",
        )
        return data.get("timing")

    async def end_session(self, session_id: str, end_time: str | None = None) -> Any:
        data = await self._request(
            "POST",
            f"/api/sessions/{session_id}/end",
            json={"endTime": end_time},
            action="end session",
        )
        return data.get("session")

    async def get_analytics(
        self, person: str | None = None, day_number: int | None = None
    ) -> ServerAnalytics:
        params: dict[str, str] = {}
        if person:
            params["person"] = person
        if day_number:
            params["dayNumber"] = str(day_number)
        try:
            data = await self._request("GET", "/api/analytics", params=params, action="get analytics")
        except SessionExpiredError:
            raise
        except ApiError as exc:
            logger.warning("Analytics unavailable, using defaults: %s", exc)
            return ServerAnalytics()
        return ServerAnalytics.from_payload(data.get("analytics") or {})

    async def get_session_history(
        self,
        person: str | None = None,
        day_number: int | None = None,
        limit: int = 10,
        include_timings: bool = False,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"limit": str(limit)}
        if person:
            params["person"] = person
        if day_number:
            params["dayNumber"] = str(day_number)
        if include_timings:
            params["includeTimings"] = "true"
        try:
            data = await self._request("GET", "/api/sessions", params=params, action="get session history")
        except ApiError as exc:
            logger.warning("Session history unavailable: %s", exc)
            return []
        return list(data.get("sessions") or [])

    async def get_session(self, session_id: str) -> dict[str, Any]:
        """One session with its ``set_timings`` (each carrying ``exercise_name``)."""
        data = await self._request("GET", f"/api/sessions/{session_id}", action="get session")
        session = data.get("session")
        if not isinstance(session, dict):
            raise ApiError("Malformed session response")
        return session

    async def clear_demo_sessions(self) -> None:
        await self._request("DELETE", "/api/sessions/demo", action="clear demo sessions")

    async def get_friend_live_session(
        self, friend_id: str, session_id: str
    ) -> dict[str, Any] | None:
        try:
            data = await self._request(
                "GET",
                f"/api/sharing/watch/friend/{friend_id}/session/{session_id}/live",
                action="get friend live session",
            )
        except SessionGoneError:
            return None
        return data.get("liveSession")

    async def push_joint_progress(self, joint_session_id: str, progress: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            f"/api/sharing/joint-sessions/{joint_session_id}/progress",
            json=progress,
            action="push joint progress",
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        logger.debug("[API] %s %s", method, path)
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(f"Failed to {action}: {exc}") from exc

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.is_success:
            return data

        message = str(data.get("error") or f"Failed to {action}")
        status = response.status_code
        if status == 401 and "expired" in message.lower():
            raise SessionExpiredError(message, status)
        if status in (401, 403, 404):
            raise SessionGoneError(message, status)
        raise ApiError(message, status)
