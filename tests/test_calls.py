from __future__ import annotations

import asyncio

from core.hub import RealtimeCore
from core.models import CALL_CONNECTED, CALL_RINGING
from fakes import FakeConnection, FakePersistence


def _setup(*user_ids: str) -> tuple[RealtimeCore, FakePersistence]:
    persistence = FakePersistence()
    for user_id in user_ids:
        persistence.add_user(user_id)
    return RealtimeCore(persistence), persistence


async def _connect(core: RealtimeCore, user_id: str):
    conn = FakeConnection(user_id)
    context, _ = await core.open(user_id, conn)
    return context, conn


def test_call_to_offline_user_fails_without_session() -> None:
    core, _ = _setup("alice", "bob")

    async def scenario():
        alice, alice_conn = await _connect(core, "alice")
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        # Bob comes online later and answers a call that never existed.
        bob, _ = await _connect(core, "bob")
        await core.dispatch(bob, "video_call_answer", {"callerId": "alice", "answer": "accepted"})
        return alice_conn

    alice_conn = asyncio.run(scenario())

    failed = alice_conn.events("call_failed")
    assert len(failed) == 1
    assert failed[0]["message"] == "User is offline"
    assert failed[0]["reason"] == "offline"
    assert len(core.broker) == 0
    assert not alice_conn.events("call_answered")


def test_full_call_flow() -> None:
    core, _ = _setup("alice", "bob")
    offer = {"type": "offer", "sdp": "v=0..."}
    answer = {"type": "answer", "sdp": "v=0..."}

    async def scenario():
        alice, alice_conn = await _connect(core, "alice")
        bob, bob_conn = await _connect(core, "bob")

        await core.dispatch(alice, "video_call_request", {"receiverId": "bob", "callType": "audio"})
        assert core.broker.get_session("alice", "bob").status == CALL_RINGING

        await core.dispatch(bob, "video_call_answer", {"callerId": "alice", "answer": "accepted"})
        assert core.broker.get_session("bob", "alice").status == CALL_CONNECTED

        await core.dispatch(alice, "video_call_offer", {"receiverId": "bob", "offer": offer})
        await core.dispatch(bob, "video_call_answer_sdp", {"receiverId": "alice", "answer": answer})
        await core.dispatch(bob, "video_call_ice_candidate", {"receiverId": "alice", "candidate": {"c": 1}})
        await core.dispatch(alice, "video_call_end", {"receiverId": "bob"})
        return alice_conn, bob_conn

    alice_conn, bob_conn = asyncio.run(scenario())

    incoming = bob_conn.events("incoming_call")
    assert len(incoming) == 1
    assert incoming[0]["callerId"] == "alice"
    assert incoming[0]["callType"] == "audio"
    assert incoming[0]["caller"]["username"] == "alice"

    answered = alice_conn.events("call_answered")
    assert answered[0]["answer"] == "accepted"
    assert answered[0]["answererId"] == "bob"

    assert bob_conn.events("call_offer") == [{"senderId": "alice", "offer": offer}]
    assert alice_conn.events("call_answer_sdp") == [{"senderId": "bob", "answer": answer}]
    assert alice_conn.events("ice_candidate") == [{"senderId": "bob", "candidate": {"c": 1}}]
    assert bob_conn.events("call_ended") == [{"senderId": "alice"}]
    assert core.broker.get_session("alice", "bob") is None


def test_rejected_call_destroys_session() -> None:
    core, _ = _setup("alice", "bob")

    async def scenario():
        alice, alice_conn = await _connect(core, "alice")
        bob, bob_conn = await _connect(core, "bob")
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        await core.dispatch(bob, "video_call_answer", {"callerId": "alice", "answer": "rejected"})
        # Late signaling after the rejection is dropped.
        await core.dispatch(alice, "video_call_offer", {"receiverId": "bob", "offer": {"sdp": "x"}})
        return alice_conn, bob_conn

    alice_conn, bob_conn = asyncio.run(scenario())

    assert alice_conn.events("call_answered")[0]["answer"] == "rejected"
    assert len(core.broker) == 0
    assert not bob_conn.events("call_offer")


def test_second_request_for_same_pair_is_rejected() -> None:
    core, _ = _setup("alice", "bob")

    async def scenario():
        alice, alice_conn = await _connect(core, "alice")
        bob, bob_conn = await _connect(core, "bob")
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        await core.dispatch(bob, "video_call_request", {"receiverId": "alice"})
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        return alice_conn, bob_conn

    alice_conn, bob_conn = asyncio.run(scenario())

    assert len(core.broker) == 1
    assert core.broker.get_session("alice", "bob").caller_id == "alice"
    assert len(bob_conn.events("incoming_call")) == 1
    assert bob_conn.events("call_failed")[0]["reason"] == "call_in_progress"
    assert alice_conn.events("call_failed")[0]["reason"] == "call_in_progress"


def test_only_callee_can_answer() -> None:
    core, _ = _setup("alice", "bob")

    async def scenario():
        alice, alice_conn = await _connect(core, "alice")
        await _connect(core, "bob")
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        await core.dispatch(alice, "video_call_answer", {"callerId": "bob", "answer": "accepted"})
        return alice_conn

    asyncio.run(scenario())

    assert core.broker.get_session("alice", "bob").status == CALL_RINGING


def test_blocked_and_unknown_callees_fail() -> None:
    core, persistence = _setup("alice", "bob")
    persistence.block("bob", "alice")

    async def scenario():
        alice, alice_conn = await _connect(core, "alice")
        await _connect(core, "bob")
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        await core.dispatch(alice, "video_call_request", {"receiverId": "ghost"})
        await core.dispatch(alice, "video_call_request", {"receiverId": "alice"})
        return alice_conn

    alice_conn = asyncio.run(scenario())

    reasons = [payload["reason"] for payload in alice_conn.events("call_failed")]
    assert reasons == ["blocked", "not_found", "invalid_target"]
    assert len(core.broker) == 0


def test_calls_do_not_need_friendship() -> None:
    core, _ = _setup("alice", "bob")

    async def scenario():
        alice, _ = await _connect(core, "alice")
        _, bob_conn = await _connect(core, "bob")
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        return bob_conn

    assert len(asyncio.run(scenario()).events("incoming_call")) == 1


def test_disconnect_ends_active_call() -> None:
    core, _ = _setup("alice", "bob")

    async def scenario():
        alice, _ = await _connect(core, "alice")
        bob, bob_conn = await _connect(core, "bob")
        await core.dispatch(alice, "video_call_request", {"receiverId": "bob"})
        await core.dispatch(bob, "video_call_answer", {"callerId": "alice", "answer": "accepted"})
        await core.close(alice)
        # Stale end from bob after the teardown is dropped quietly.
        await core.dispatch(bob, "video_call_end", {"receiverId": "alice"})
        return bob_conn

    bob_conn = asyncio.run(scenario())

    assert bob_conn.events("call_ended") == [{"senderId": "alice"}]
    assert core.broker.get_session("alice", "bob") is None
