"""Two-participant joint sessions and read-only watching over the realtime socket."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from liftsync.api.client import WorkoutApi
from liftsync.api.errors import ApiError
from liftsync.realtime import messages as msg
from liftsync.realtime.messages import Message
from liftsync.realtime.transport import RealtimeTransport

logger = logging.getLogger(__name__)

WATCH_SESSION_ENDED = "session_ended"
WATCH_POLL_ERROR = "poll_error"


class JointState(str, Enum):
    NOT_IN_SESSION = "not_in_session"
    INVITE_SENT = "invite_sent"
    INVITE_RECEIVED = "invite_received"
    IN_SESSION = "in_session"


@dataclass(frozen=True)
class JointParticipant:
    user_id: str
    username: str = ""
    exercise_names: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class JointSession:
    id: str
    participants: tuple[JointParticipant, ...] = ()

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> JointSession:
        participants = tuple(
            JointParticipant(
                user_id=str(p.get("userId", "")),
                username=str(p.get("username") or ""),
                exercise_names=tuple(p.get("exerciseNames") or ()),
            )
            for p in data.get("participants") or ()
            if isinstance(p, dict)
        )
        return cls(id=str(data["id"]), participants=participants)


@dataclass(frozen=True)
class ParticipantProgress:
    exercise_index: int | None = None
    set_index: int | None = None
    exercise_name: str | None = None
    ready_for_next: bool = False
    exercise_names: tuple[dict[str, Any], ...] = field(default=(), compare=False)

    @property
    def pointer(self) -> tuple[int | None, int | None]:
        return (self.exercise_index, self.set_index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exerciseIndex": self.exercise_index,
            "setIndex": self.set_index,
            "exerciseName": self.exercise_name,
            "readyForNext": self.ready_for_next,
            "exerciseNames": list(self.exercise_names),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ParticipantProgress:
        return cls(
            exercise_index=data.get("exerciseIndex"),
            set_index=data.get("setIndex"),
            exercise_name=data.get("exerciseName"),
            ready_for_next=bool(data.get("readyForNext", False)),
            exercise_names=tuple(data.get("exerciseNames") or ()),
        )


@dataclass(frozen=True)
class WatchTarget:
    friend_id: str
    friend_username: str
    session_id: str


@dataclass(frozen=True)
class PartnerSet:
    exercise_name: str
    set_index: int


class JointSessionCoordinator:
    """Per-participant joint session state driven by local calls and inbound messages.

    ``current_session_id`` and ``exercise_names`` are read on demand so the
    coordinator always sees the state machine's latest values.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        api: WorkoutApi,
        user_id: str | None,
        *,
        current_session_id: Callable[[], Optional[str]],
        exercise_names: Callable[[], list[dict[str, Any]]] | None = None,
    ) -> None:
        self._transport = transport
        self._api = api
        self._user_id = user_id
        self._current_session_id = current_session_id
        self._exercise_names = exercise_names or (lambda: [])

        self._state = JointState.NOT_IN_SESSION
        self._joint_session: JointSession | None = None
        self._joint_session_id: str | None = None
        self._partner_progress: ParticipantProgress | None = None
        self._my_progress: ParticipantProgress | None = None
        self._pending_invite: Message | None = None
        self._partner_sets: list[PartnerSet] = []
        self.invite_outcome: str | None = None

        self._watch_target: WatchTarget | None = None
        self._watch_session: dict[str, Any] | None = None
        self._watch_error: str | None = None

    # -- read surface -----------------------------------------------------

    @property
    def state(self) -> JointState:
        return self._state

    @property
    def joint_session(self) -> JointSession | None:
        return self._joint_session

    @property
    def joint_session_id(self) -> str | None:
        return self._joint_session_id

    @property
    def partner_progress(self) -> ParticipantProgress | None:
        return self._partner_progress

    @property
    def my_progress(self) -> ParticipantProgress | None:
        return self._my_progress

    @property
    def pending_invite(self) -> Message | None:
        return self._pending_invite

    @property
    def is_partner_ready(self) -> bool:
        return self._partner_progress is not None and self._partner_progress.ready_for_next

    @property
    def sync_pulse(self) -> bool:
        """True when both sides are ready on the same exercise/set pair."""
        mine, theirs = self._my_progress, self._partner_progress
        if mine is None or theirs is None:
            return False
        if None in mine.pointer or None in theirs.pointer:
            return False
        return mine.ready_for_next and theirs.ready_for_next and mine.pointer == theirs.pointer

    @property
    def partner_completed_sets(self) -> tuple[PartnerSet, ...]:
        return tuple(self._partner_sets)

    @property
    def partner_exercise_list(self) -> tuple[dict[str, Any], ...]:
        """The partner's announced exercises, first occurrence per name (case-insensitive)."""
        if self._state is not JointState.IN_SESSION:
            return ()
        source: tuple[Any, ...] = ()
        if self._joint_session is not None:
            for participant in self._joint_session.participants:
                if participant.user_id != self._user_id and participant.exercise_names:
                    source = participant.exercise_names
                    break
        if not source and self._partner_progress is not None:
            source = self._partner_progress.exercise_names

        seen: set[str] = set()
        result: list[dict[str, Any]] = []
        for entry in source:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "")
            key = name.strip().lower()
            if key and key not in seen:
                seen.add(key)
                result.append({"name": name, "sets": entry.get("sets")})
        return tuple(result)

    @property
    def is_watching(self) -> bool:
        return self._watch_target is not None

    @property
    def watch_target(self) -> WatchTarget | None:
        return self._watch_target

    @property
    def watch_session(self) -> dict[str, Any] | None:
        return self._watch_session

    @property
    def watch_error(self) -> str | None:
        return self._watch_error

    # -- joint session ----------------------------------------------------

    async def send_invite(self, to_user_id: str) -> bool:
        if self._state is not JointState.NOT_IN_SESSION:
            logger.info("Cannot invite %s while %s", to_user_id, self._state.value)
            return False
        session_id = self._current_session_id()
        if not session_id:
            logger.info("Cannot invite %s without an active session", to_user_id)
            return False

        self.invite_outcome = None
        sent = await self._transport.send(
            {"type": msg.JOINT_INVITE, "toUserId": to_user_id, "fromSessionId": session_id}
        )
        if sent:
            self._state = JointState.INVITE_SENT
        return sent

    async def accept_invite(self) -> bool:
        invite = self._pending_invite
        if self._state is not JointState.INVITE_RECEIVED or invite is None:
            return False

        invite_id = invite.get("inviteId")
        if not await self._transport.send({"type": msg.ACCEPT_JOINT_INVITE, "inviteId": invite_id}):
            return False

        self._pending_invite = None
        payload = invite.get("jointSession")
        if isinstance(payload, dict) and payload.get("id"):
            await self._enter_session(JointSession.from_payload(payload))
        else:
            joint_id = invite.get("jointSessionId") or invite_id
            await self._enter_session(JointSession(id=str(joint_id)))
        return True

    async def decline_invite(self) -> bool:
        invite = self._pending_invite
        if self._state is not JointState.INVITE_RECEIVED or invite is None:
            return False
        await self._transport.send({"type": msg.DECLINE_JOINT_INVITE, "inviteId": invite.get("inviteId")})
        self._pending_invite = None
        self._state = JointState.NOT_IN_SESSION
        return True

    async def leave_joint_session(self) -> bool:
        if self._state is not JointState.IN_SESSION:
            return False
        joint_id = self._joint_session_id
        if joint_id:
            await self._transport.send({"type": msg.LEAVE_JOINT_SESSION, "jointSessionId": joint_id})
        logger.info("Left joint session %s", joint_id)
        self._reset_joint()
        return True

    async def cancel_invite(self) -> bool:
        """Give up on an outgoing invite the partner has not answered."""
        if self._state is not JointState.INVITE_SENT:
            return False
        logger.info("Cancelled outgoing joint invite")
        self._reset_joint()
        return True

    async def on_workout_ended(self) -> None:
        if self._state is JointState.IN_SESSION:
            await self.leave_joint_session()
        elif self._state is JointState.INVITE_SENT:
            await self.cancel_invite()
        elif self._state is JointState.INVITE_RECEIVED:
            await self.decline_invite()

    async def push_progress(
        self,
        exercise_index: int | None,
        set_index: int | None,
        exercise_name: str | None,
        ready_for_next: bool = False,
    ) -> bool:
        joint_id = self._joint_session_id
        if self._state is not JointState.IN_SESSION or joint_id is None:
            return False

        progress = ParticipantProgress(
            exercise_index=exercise_index,
            set_index=set_index,
            exercise_name=exercise_name,
            ready_for_next=ready_for_next,
            exercise_names=self._named_exercises(),
        )
        self._my_progress = progress
        return await self._deliver(joint_id, progress)

    async def _deliver(self, joint_id: str, progress: ParticipantProgress) -> bool:
        if self._transport.connected:
            return await self._transport.send(
                {"type": msg.PUSH_JOINT_PROGRESS, "jointSessionId": joint_id, "progress": progress.to_dict()}
            )
        try:
            await self._api.push_joint_progress(joint_id, progress.to_dict())
        except ApiError as exc:
            logger.warning("Failed to push joint progress: %s", exc)
            return False
        return True

    # -- watching ---------------------------------------------------------

    async def start_watching(self, friend_id: str, friend_username: str, session_id: str) -> bool:
        if self._state is not JointState.NOT_IN_SESSION:
            logger.info("Cannot watch while %s", self._state.value)
            return False

        self._watch_target = WatchTarget(friend_id, friend_username, session_id)
        self._watch_session = None
        self._watch_error = None
        try:
            live = await self._api.get_friend_live_session(friend_id, session_id)
        except ApiError as exc:
            logger.error("Failed to start watching %s: %s", friend_username, exc)
            self._fail_watch(WATCH_POLL_ERROR)
            return False
        if not live:
            self._fail_watch(WATCH_SESSION_ENDED)
            return False

        self._watch_session = live
        await self._transport.send({"type": msg.WATCH_SESSION, "friendId": friend_id, "sessionId": session_id})
        return True

    async def stop_watching(self) -> None:
        target = self._watch_target
        if target is not None:
            await self._transport.send(
                {"type": msg.UNWATCH_SESSION, "friendId": target.friend_id, "sessionId": target.session_id}
            )
        self._watch_target = None
        self._watch_session = None
        self._watch_error = None

    # -- inbound ----------------------------------------------------------

    async def handle_message(self, message: Message) -> None:
        kind = message.get("type")
        if kind == msg.JOINT_INVITE:
            self._on_invite(message)
        elif kind == msg.INVITE_STATUS:
            await self._on_invite_status(message)
        elif kind == msg.JOINT_PROGRESS:
            self._on_progress(message)
        elif kind == msg.JOINT_SESSION_ENDED:
            logger.info("Joint session %s ended by peer", self._joint_session_id)
            self._reset_joint()
        elif kind == msg.WATCH_PROGRESS:
            self._on_watch_progress(message)
        elif kind == msg.WATCH_ENDED:
            target = self._watch_target
            if target is not None and message.get("sessionId") == target.session_id:
                self._fail_watch(WATCH_SESSION_ENDED)

    def _on_invite(self, message: Message) -> None:
        if self._state is not JointState.NOT_IN_SESSION:
            logger.info("Ignoring joint invite while %s", self._state.value)
            return
        self._pending_invite = message
        self._state = JointState.INVITE_RECEIVED

    async def _on_invite_status(self, message: Message) -> None:
        status = message.get("status")
        if status == "accepted":
            payload = message.get("jointSession")
            if not isinstance(payload, dict) or not payload.get("id"):
                logger.warning("Accepted invite without a joint session, ignoring")
                return
            self.invite_outcome = "accepted"
            await self._enter_session(JointSession.from_payload(payload))
        elif status == "declined":
            self.invite_outcome = "declined"
            if self._state is JointState.INVITE_SENT:
                self._state = JointState.NOT_IN_SESSION
        elif status == "session_ended":
            self._reset_joint()

    def _on_progress(self, message: Message) -> None:
        payload = message.get("progress")
        if self._state is not JointState.IN_SESSION or not isinstance(payload, dict):
            return
        from_user = payload.get("fromUserId")
        if from_user is not None and from_user == self._user_id:
            return

        if from_user and payload.get("exerciseNames") and self._joint_session is not None:
            names = tuple(payload["exerciseNames"])
            self._joint_session = JointSession(
                id=self._joint_session.id,
                participants=tuple(
                    JointParticipant(p.user_id, p.username, names) if p.user_id == from_user else p
                    for p in self._joint_session.participants
                ),
            )

        progress = ParticipantProgress.from_payload(payload)
        if progress.exercise_name is not None and progress.set_index is not None:
            self._add_partner_set(progress.exercise_name, progress.set_index)
        self._partner_progress = progress

    def _on_watch_progress(self, message: Message) -> None:
        target = self._watch_target
        if target is None or message.get("sessionId") != target.session_id:
            return
        live = message.get("liveSession")
        if isinstance(live, dict):
            self._watch_session = live

    def _add_partner_set(self, exercise_name: str, set_index: int) -> None:
        key = exercise_name.strip().lower()
        for existing in self._partner_sets:
            if existing.set_index == set_index and existing.exercise_name.strip().lower() == key:
                return
        self._partner_sets.append(PartnerSet(exercise_name, set_index))

    async def _enter_session(self, joint: JointSession) -> None:
        logger.info("Joined joint session %s", joint.id)
        self._joint_session = joint
        self._joint_session_id = joint.id
        self._state = JointState.IN_SESSION
        self._pending_invite = None
        self._partner_progress = None
        self._my_progress = None
        self._partner_sets = []
        await self._announce_exercises()

    async def _announce_exercises(self) -> None:
        # pointer-less progress so the partner sees our list before the first set
        names = self._named_exercises()
        if not names or self._joint_session_id is None:
            return
        await self._deliver(self._joint_session_id, ParticipantProgress(exercise_names=names))

    def _named_exercises(self) -> tuple[dict[str, Any], ...]:
        return tuple(e for e in self._exercise_names() if e.get("name"))

    def _reset_joint(self) -> None:
        self._state = JointState.NOT_IN_SESSION
        self._joint_session = None
        self._joint_session_id = None
        self._partner_progress = None
        self._my_progress = None
        self._pending_invite = None
        self._partner_sets = []

    def _fail_watch(self, error: str) -> None:
        self._watch_error = error
        self._watch_target = None
        self._watch_session = None
