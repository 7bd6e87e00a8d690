from __future__ import annotations

import asyncio

from fakes import FakeApi, FakeTransport

from liftsync.joint.coordinator import JointSessionCoordinator, JointState, PartnerSet


def _build(transport: FakeTransport | None = None, api: FakeApi | None = None, session_id: str | None = "srv-1"):
    transport = transport or FakeTransport()
    api = api or FakeApi()
    coordinator = JointSessionCoordinator(
        transport,
        api,
        "me",
        current_session_id=lambda: session_id,
        exercise_names=lambda: [{"name": "Bench", "sets": 3}, {"name": "", "sets": 1}],
    )
    return coordinator, transport, api


def _joint_payload() -> dict:
    return {
        "id": "joint-1",
        "participants": [{"userId": "me", "username": "ana"}, {"userId": "pal", "username": "bo"}],
    }


async def _in_session(coordinator: JointSessionCoordinator) -> None:
    await coordinator.send_invite("pal")
    await coordinator.handle_message({"type": "invite_status", "status": "accepted", "jointSession": _joint_payload()})


def _partner(exercise: int | None, set_index: int | None, ready: bool, name: str | None = "Bench") -> dict:
    return {
        "type": "joint_progress",
        "progress": {
            "exerciseIndex": exercise,
            "setIndex": set_index,
            "exerciseName": name,
            "readyForNext": ready,
            "fromUserId": "pal",
        },
    }


def test_invite_then_accepted_enters_session() -> None:
    async def _run() -> None:
        coordinator, transport, _ = _build()

        assert await coordinator.send_invite("pal")
        assert coordinator.state is JointState.INVITE_SENT
        assert transport.sent[0] == {"type": "joint_invite", "toUserId": "pal", "fromSessionId": "srv-1"}

        await coordinator.handle_message({"type": "invite_status", "status": "accepted", "jointSession": _joint_payload()})

        assert coordinator.state is JointState.IN_SESSION
        assert coordinator.invite_outcome == "accepted"
        assert coordinator.joint_session.id == "joint-1"
        assert [p.username for p in coordinator.joint_session.participants] == ["ana", "bo"]

    asyncio.run(_run())


def test_invite_requires_idle_state_active_session_and_open_socket() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build(session_id=None)
        assert not await coordinator.send_invite("pal")

        offline, _, _ = _build(transport=FakeTransport(connected=False))
        assert not await offline.send_invite("pal")
        assert offline.state is JointState.NOT_IN_SESSION

        busy, transport, _ = _build()
        await _in_session(busy)
        assert not await busy.send_invite("other")
        assert transport.types() == ["joint_invite", "push_joint_progress"]

    asyncio.run(_run())


def test_declined_invite_returns_to_idle() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        await coordinator.send_invite("pal")

        await coordinator.handle_message({"type": "invite_status", "status": "declined"})

        assert coordinator.state is JointState.NOT_IN_SESSION
        assert coordinator.invite_outcome == "declined"

    asyncio.run(_run())


def test_received_invite_can_be_accepted() -> None:
    async def _run() -> None:
        coordinator, transport, _ = _build()
        await coordinator.handle_message({"type": "joint_invite", "inviteId": "inv-3", "fromUsername": "bo"})
        assert coordinator.state is JointState.INVITE_RECEIVED
        assert coordinator.pending_invite["inviteId"] == "inv-3"

        assert await coordinator.accept_invite()

        assert transport.sent[0] == {"type": "accept_joint_invite", "inviteId": "inv-3"}
        assert coordinator.state is JointState.IN_SESSION
        assert coordinator.pending_invite is None
        assert coordinator.joint_session.id == "inv-3"

    asyncio.run(_run())


def test_received_invite_can_be_declined() -> None:
    async def _run() -> None:
        coordinator, transport, _ = _build()
        assert not await coordinator.decline_invite()
        await coordinator.handle_message({"type": "joint_invite", "inviteId": "inv-4"})

        assert await coordinator.decline_invite()

        assert transport.sent == [{"type": "decline_joint_invite", "inviteId": "inv-4"}]
        assert coordinator.state is JointState.NOT_IN_SESSION
        assert not await coordinator.accept_invite()

    asyncio.run(_run())


def test_sync_pulse_needs_both_ready_on_same_pointer() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        await _in_session(coordinator)

        await coordinator.push_progress(0, 1, "Bench", ready_for_next=True)
        await coordinator.handle_message(_partner(0, 1, ready=False))
        assert not coordinator.sync_pulse
        assert not coordinator.is_partner_ready

        await coordinator.handle_message(_partner(0, 2, ready=True))
        assert coordinator.is_partner_ready
        assert not coordinator.sync_pulse

        await coordinator.handle_message(_partner(0, 1, ready=True))
        assert coordinator.sync_pulse

        await coordinator.push_progress(0, 1, "Bench", ready_for_next=False)
        assert not coordinator.sync_pulse

    asyncio.run(_run())


def test_null_pointers_never_pulse() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        await _in_session(coordinator)

        await coordinator.push_progress(None, None, None, ready_for_next=True)
        await coordinator.handle_message(_partner(None, None, ready=True, name=None))

        assert not coordinator.sync_pulse

    asyncio.run(_run())


def test_progress_push_carries_exercise_names() -> None:
    async def _run() -> None:
        coordinator, transport, _ = _build()
        assert not await coordinator.push_progress(0, 0, "Bench")
        await _in_session(coordinator)

        assert await coordinator.push_progress(0, 0, "Bench")

        message = transport.sent[-1]
        assert message["type"] == "push_joint_progress"
        assert message["jointSessionId"] == "joint-1"
        assert message["progress"]["exerciseNames"] == [{"name": "Bench", "sets": 3}]

    asyncio.run(_run())


def test_progress_falls_back_to_rest_when_socket_is_down() -> None:
    async def _run() -> None:
        coordinator, transport, api = _build()
        await _in_session(coordinator)
        transport.connected = False

        assert await coordinator.push_progress(1, 0, "Row")

        ((name, (joint_id, progress)),) = api.calls
        assert name == "push_joint_progress"
        assert joint_id == "joint-1"
        assert progress["exerciseName"] == "Row"

        api.offline = True
        assert not await coordinator.push_progress(1, 1, "Row")

    asyncio.run(_run())


def test_partner_sets_are_deduplicated_case_insensitively() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        await _in_session(coordinator)

        await coordinator.handle_message(_partner(0, 0, ready=False, name="Bench"))
        await coordinator.handle_message(_partner(0, 0, ready=True, name=" bench "))
        await coordinator.handle_message(_partner(0, 1, ready=False, name="Bench"))

        assert coordinator.partner_completed_sets == (PartnerSet("Bench", 0), PartnerSet("Bench", 1))

    asyncio.run(_run())


def test_own_progress_echo_is_ignored() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        await _in_session(coordinator)

        echo = _partner(0, 0, ready=True)
        echo["progress"]["fromUserId"] = "me"
        await coordinator.handle_message(echo)

        assert coordinator.partner_progress is None

    asyncio.run(_run())


def test_partner_exercise_names_update_participant() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        await _in_session(coordinator)

        message = _partner(None, None, ready=False, name=None)
        message["progress"]["exerciseNames"] = [{"name": "Row", "sets": 4}]
        await coordinator.handle_message(message)

        pal = coordinator.joint_session.participants[1]
        assert pal.exercise_names == ({"name": "Row", "sets": 4},)

    asyncio.run(_run())


def test_leave_and_remote_end_reset_state() -> None:
    async def _run() -> None:
        coordinator, transport, _ = _build()
        await _in_session(coordinator)
        await coordinator.handle_message(_partner(0, 0, ready=True))

        assert await coordinator.leave_joint_session()
        assert transport.sent[-1] == {"type": "leave_joint_session", "jointSessionId": "joint-1"}
        assert coordinator.state is JointState.NOT_IN_SESSION
        assert coordinator.partner_progress is None
        assert coordinator.partner_completed_sets == ()
        assert not await coordinator.leave_joint_session()

        await _in_session(coordinator)
        await coordinator.handle_message({"type": "joint_session_ended"})
        assert coordinator.joint_session is None

        await _in_session(coordinator)
        await coordinator.handle_message({"type": "invite_status", "status": "session_ended"})
        assert coordinator.state is JointState.NOT_IN_SESSION

    asyncio.run(_run())


def test_workout_end_leaves_joint_session() -> None:
    async def _run() -> None:
        coordinator, transport, _ = _build()
        await _in_session(coordinator)

        await coordinator.on_workout_ended()

        assert coordinator.state is JointState.NOT_IN_SESSION
        assert transport.types()[-1] == "leave_joint_session"

    asyncio.run(_run())


def test_unknown_messages_are_ignored() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        await _in_session(coordinator)

        await coordinator.handle_message({"type": "friend_request", "from": "x"})
        await coordinator.handle_message({"type": "joint_progress"})

        assert coordinator.state is JointState.IN_SESSION
        assert coordinator.partner_progress is None

    asyncio.run(_run())


def test_watching_a_live_session() -> None:
    async def _run() -> None:
        api = FakeApi()
        api.live_sessions[("pal", "srv-9")] = {"sessionId": "srv-9", "sets": 2}
        coordinator, transport, _ = _build(api=api)

        assert await coordinator.start_watching("pal", "bo", "srv-9")
        assert coordinator.is_watching
        assert coordinator.watch_session == {"sessionId": "srv-9", "sets": 2}
        assert transport.sent[-1] == {"type": "watch_session", "friendId": "pal", "sessionId": "srv-9"}

        await coordinator.handle_message({"type": "watch_progress", "sessionId": "other", "liveSession": {"sets": 9}})
        await coordinator.handle_message({"type": "watch_progress", "sessionId": "srv-9", "liveSession": {"sets": 3}})
        assert coordinator.watch_session == {"sets": 3}

        await coordinator.handle_message({"type": "watch_ended", "sessionId": "srv-9"})
        assert not coordinator.is_watching
        assert coordinator.watch_error == "session_ended"

    asyncio.run(_run())


def test_watch_errors_do_not_touch_joint_state() -> None:
    async def _run() -> None:
        coordinator, _, api = _build()

        assert not await coordinator.start_watching("pal", "bo", "missing")
        assert coordinator.watch_error == "session_ended"

        api.offline = True
        assert not await coordinator.start_watching("pal", "bo", "srv-9")
        assert coordinator.watch_error == "poll_error"
        assert coordinator.watch_target is None
        assert coordinator.state is JointState.NOT_IN_SESSION

    asyncio.run(_run())


def test_stop_watching_unsubscribes() -> None:
    async def _run() -> None:
        api = FakeApi()
        api.live_sessions[("pal", "srv-9")] = {"sets": 1}
        coordinator, transport, _ = _build(api=api)
        await coordinator.start_watching("pal", "bo", "srv-9")

        await coordinator.stop_watching()

        assert transport.sent[-1] == {"type": "unwatch_session", "friendId": "pal", "sessionId": "srv-9"}
        assert not coordinator.is_watching
        assert coordinator.watch_session is None

    asyncio.run(_run())


def test_watching_is_refused_during_a_joint_session() -> None:
    async def _run() -> None:
        coordinator, _, api = _build()
        await _in_session(coordinator)

        assert not await coordinator.start_watching("pal", "bo", "srv-9")
        assert api.calls == []

    asyncio.run(_run())


def test_unanswered_invite_can_be_cancelled() -> None:
    async def _run() -> None:
        coordinator, transport, api = _build()
        assert not await coordinator.cancel_invite()
        await coordinator.send_invite("bob")

        assert await coordinator.cancel_invite()

        assert coordinator.state is JointState.NOT_IN_SESSION
        assert await coordinator.send_invite("pal")
        assert transport.sent[-1]["toUserId"] == "pal"

    asyncio.run(_run())


def test_workout_end_clears_pending_invites() -> None:
    async def _run() -> None:
        api = FakeApi()
        api.live_sessions[("pal", "srv-9")] = {"sets": 1}
        coordinator, transport, _ = _build(api=api)
        await coordinator.send_invite("bob")

        await coordinator.on_workout_ended()

        assert coordinator.state is JointState.NOT_IN_SESSION
        await coordinator.handle_message({"type": "joint_invite", "inviteId": "inv-5"})
        assert coordinator.state is JointState.INVITE_RECEIVED

        await coordinator.on_workout_ended()

        assert coordinator.state is JointState.NOT_IN_SESSION
        assert coordinator.pending_invite is None
        assert transport.sent[-1] == {"type": "decline_joint_invite", "inviteId": "inv-5"}
        assert await coordinator.start_watching("pal", "bo", "srv-9")

    asyncio.run(_run())


def test_joining_announces_exercise_list_once() -> None:
    async def _run() -> None:
        coordinator, transport, _ = _build()

        await _in_session(coordinator)

        announce = transport.sent[-1]
        assert announce["type"] == "push_joint_progress"
        assert announce["jointSessionId"] == "joint-1"
        assert announce["progress"]["exerciseNames"] == [{"name": "Bench", "sets": 3}]
        assert announce["progress"]["setIndex"] is None
        assert transport.types().count("push_joint_progress") == 1
        assert coordinator.my_progress is None

    asyncio.run(_run())


def test_nothing_is_announced_without_exercises() -> None:
    async def _run() -> None:
        transport = FakeTransport()
        coordinator = JointSessionCoordinator(transport, FakeApi(), "me", current_session_id=lambda: "srv-1")

        await _in_session(coordinator)

        assert transport.types() == ["joint_invite"]

    asyncio.run(_run())


def test_partner_exercise_list_is_deduplicated() -> None:
    async def _run() -> None:
        coordinator, _, _ = _build()
        assert coordinator.partner_exercise_list == ()
        await _in_session(coordinator)

        message = _partner(None, None, ready=False, name=None)
        message["progress"]["exerciseNames"] = [
            {"name": "Row", "sets": 4},
            {"name": " row ", "sets": 2},
            {"name": "", "sets": 1},
            {"name": "Curl", "sets": 3},
        ]
        await coordinator.handle_message(message)

        assert coordinator.partner_exercise_list == ({"name": "Row", "sets": 4}, {"name": "Curl", "sets": 3})

        await coordinator.leave_joint_session()
        assert coordinator.partner_exercise_list == ()

    asyncio.run(_run())
