"""Realtime message envelope: a JSON object with a string ``type``."""

from __future__ import annotations

import json
from typing import Any

Message = dict[str, Any]

SESSION_STARTED = "session_started"
SESSION_ENDED = "session_ended"

JOINT_INVITE = "joint_invite"
ACCEPT_JOINT_INVITE = "accept_joint_invite"
DECLINE_JOINT_INVITE = "decline_joint_invite"
LEAVE_JOINT_SESSION = "leave_joint_session"
PUSH_JOINT_PROGRESS = "push_joint_progress"
WATCH_SESSION = "watch_session"
UNWATCH_SESSION = "unwatch_session"

INVITE_STATUS = "invite_status"
JOINT_PROGRESS = "joint_progress"
JOINT_SESSION_ENDED = "joint_session_ended"
WATCH_PROGRESS = "watch_progress"
WATCH_ENDED = "watch_ended"


class MessageParseError(ValueError):
    """Raised when a frame is not a valid message envelope."""


def parse_message(raw: str | bytes) -> Message:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MessageParseError(f"Frame is not UTF-8: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MessageParseError(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MessageParseError("Message must be an object")
    kind = data.get("type")
    if not isinstance(kind, str) or not kind:
        raise MessageParseError("Message field 'type' must be a non-empty string")
    return data


def encode_message(message: Message) -> str:
    if not isinstance(message.get("type"), str):
        raise MessageParseError("Message field 'type' must be a string")
    return json.dumps(message, ensure_ascii=True)
