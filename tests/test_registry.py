from __future__ import annotations

import asyncio

from core.registry import ConnectionRegistry
from fakes import FakeConnection


def test_register_twice_replaces_entry() -> None:
    registry = ConnectionRegistry()
    first = FakeConnection("first")
    second = FakeConnection("second")

    assert registry.register("alice", first) is None
    previous = registry.register("alice", second)

    assert previous is not None and previous.handle is first
    assert registry.resolve("alice") is second
    assert len(registry) == 1
    assert registry.status_of("alice") == "online"


def test_resolve_unknown_user_returns_none() -> None:
    registry = ConnectionRegistry()
    assert registry.resolve("ghost") is None
    assert registry.status_of("ghost") == "offline"


def test_set_status_ignores_invalid_values() -> None:
    registry = ConnectionRegistry()
    registry.register("alice", FakeConnection())

    assert registry.set_status("alice", "away")
    assert not registry.set_status("alice", "sleeping")
    assert registry.status_of("alice") == "away"


def test_unregister_is_idempotent() -> None:
    registry = ConnectionRegistry()
    registry.register("alice", FakeConnection())

    assert registry.unregister("alice")
    assert not registry.unregister("alice")
    assert "alice" not in registry


def test_superseded_handle_cannot_unregister_replacement() -> None:
    registry = ConnectionRegistry()
    old = FakeConnection("old")
    new = FakeConnection("new")
    registry.register("alice", old)
    registry.register("alice", new)

    assert not registry.unregister("alice", old)
    assert registry.resolve("alice") is new


def test_deliver_skips_offline_users() -> None:
    registry = ConnectionRegistry()
    conn = FakeConnection()
    registry.register("bob", conn)

    assert asyncio.run(registry.deliver("bob", "ping", {"x": 1}))
    assert not asyncio.run(registry.deliver("carol", "ping", {"x": 1}))
    assert conn.sent == [("ping", {"x": 1})]


def test_deliver_swallows_transport_failures() -> None:
    class BrokenConnection:
        async def emit(self, event, payload) -> None:
            raise ConnectionResetError("gone")

    registry = ConnectionRegistry()
    registry.register("bob", BrokenConnection())

    assert not asyncio.run(registry.deliver("bob", "ping", {}))
