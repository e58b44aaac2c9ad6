from __future__ import annotations

import asyncio

from core.config import RoutingConfig
from core.hub import RealtimeCore
from core.presence import PresenceNotifier
from core.registry import ConnectionRegistry
from fakes import FakeConnection, FakePersistence


def test_broadcast_reaches_only_online_friends() -> None:
    registry = ConnectionRegistry()
    bob = FakeConnection("bob")
    registry.register("bob", bob)
    notifier = PresenceNotifier(registry)

    delivered = asyncio.run(notifier.broadcast_status("alice", ["bob", "carol"], "away"))

    assert delivered == 1
    assert bob.sent == [("friend_status_change", {"userId": "alice", "status": "away"})]


def _setup() -> tuple[RealtimeCore, FakePersistence]:
    persistence = FakePersistence()
    for user_id in ("alice", "bob", "carol"):
        persistence.add_user(user_id)
    persistence.befriend("alice", "bob")
    return RealtimeCore(persistence), persistence


def test_connect_status_change_and_disconnect_fan_out() -> None:
    core, persistence = _setup()

    async def scenario():
        bob_conn = FakeConnection("bob")
        carol_conn = FakeConnection("carol")
        await core.open("bob", bob_conn)
        await core.open("carol", carol_conn)
        alice, _ = await core.open("alice", FakeConnection("alice"))
        await core.dispatch(alice, "status_change", {"status": "busy"})
        await core.close(alice)
        return bob_conn, carol_conn

    bob_conn, carol_conn = asyncio.run(scenario())

    statuses = [payload["status"] for payload in bob_conn.events("friend_status_change")]
    assert statuses == ["online", "busy", "offline"]
    assert not carol_conn.events("friend_status_change")
    assert ("alice", "busy", None) in persistence.statuses
    assert [status for user, status, _ in persistence.statuses if user == "alice"] == [
        "online",
        "busy",
        "offline",
    ]


def test_invalid_status_is_dropped_silently() -> None:
    core, persistence = _setup()

    async def scenario():
        bob_conn = FakeConnection("bob")
        await core.open("bob", bob_conn)
        alice_conn = FakeConnection("alice")
        alice, _ = await core.open("alice", alice_conn)
        await core.dispatch(alice, "status_change", {"status": "invisible"})
        return alice_conn, bob_conn

    alice_conn, bob_conn = asyncio.run(scenario())

    assert alice_conn.sent == []
    assert core.registry.status_of("alice") == "online"
    assert [payload["status"] for payload in bob_conn.events("friend_status_change")] == ["online"]


def test_status_persistence_failure_still_fans_out() -> None:
    core, persistence = _setup()
    persistence.fail_status = True

    async def scenario():
        bob_conn = FakeConnection("bob")
        await core.open("bob", bob_conn)
        alice, _ = await core.open("alice", FakeConnection("alice"))
        await core.dispatch(alice, "status_change", {"status": "away"})
        return bob_conn

    bob_conn = asyncio.run(scenario())

    assert [payload["status"] for payload in bob_conn.events("friend_status_change")] == ["online", "away"]
    assert core.registry.status_of("alice") == "away"


def test_snapshot_is_stale_unless_refresh_enabled() -> None:
    async def scenario(config: RoutingConfig):
        persistence = FakePersistence()
        for user_id in ("alice", "bob"):
            persistence.add_user(user_id)
        core = RealtimeCore(persistence, config)
        alice_conn = FakeConnection("alice")
        alice, _ = await core.open("alice", alice_conn)
        await core.open("bob", FakeConnection("bob"))
        # Friendship accepted elsewhere while alice stays connected.
        persistence.befriend("alice", "bob")
        await core.dispatch(alice, "send_message", {"receiverId": "bob", "content": "hi"})
        return alice_conn

    stale = asyncio.run(scenario(RoutingConfig()))
    assert stale.events("error") == [{"message": "Can only send messages to friends"}]

    fresh = asyncio.run(scenario(RoutingConfig(refresh_relationships=True)))
    assert len(fresh.events("message_sent")) == 1
