# tests/services/test_connections.py
"""Tests for the connection registry used for chat fan-out."""

import pytest

from parley_stage.services.connections import (
    ChatConnection,
    ConnectionRegistry,
    ConnectionState,
)
from tests.services.fakes import FakeSocket


def _connection(user_id, **socket_kwargs):
    return ChatConnection(FakeSocket(**socket_kwargs), user_id=user_id, state=ConnectionState.ACTIVE)


def test_register_and_unregister():
    registry = ConnectionRegistry()
    first, second = _connection("u1"), _connection("u1")

    registry.register(first)
    registry.register(second)
    assert registry.is_online("u1")
    assert set(registry.connections_for("u1")) == {first, second}
    assert registry.connection_count() == 2

    registry.unregister(first)
    assert registry.connections_for("u1") == (second,)

    registry.unregister(second)
    assert not registry.is_online("u1")
    assert registry.connections_for("u1") == ()


def test_unregister_is_idempotent():
    registry = ConnectionRegistry()
    connection = _connection("u1")
    registry.register(connection)

    registry.unregister(connection)
    registry.unregister(connection)
    registry.unregister(ChatConnection(FakeSocket()))

    assert registry.connection_count() == 0


def test_register_requires_authenticated_connection():
    with pytest.raises(ValueError):
        ConnectionRegistry().register(ChatConnection(FakeSocket()))


def test_registries_are_independent():
    first, second = ConnectionRegistry(), ConnectionRegistry()
    first.register(_connection("u1"))

    assert not second.is_online("u1")


@pytest.mark.asyncio
async def test_emit_reaches_every_device():
    registry = ConnectionRegistry()
    phone, laptop = _connection("u1"), _connection("u1")
    other = _connection("u2")
    for connection in (phone, laptop, other):
        registry.register(connection)

    delivered = await registry.emit("u1", "new_message", {"id": 1})

    assert delivered == 2
    assert phone.websocket.sent == [{"event": "new_message", "data": {"id": 1}}]
    assert laptop.websocket.sent == [{"event": "new_message", "data": {"id": 1}}]
    assert other.websocket.sent == []


@pytest.mark.asyncio
async def test_emit_to_offline_user_is_noop():
    assert await ConnectionRegistry().emit("nobody", "new_message", {}) == 0


@pytest.mark.asyncio
async def test_emit_drops_dead_connections():
    registry = ConnectionRegistry()
    alive, dead = _connection("u1"), _connection("u1", fail_sends=True)
    registry.register(alive)
    registry.register(dead)

    delivered = await registry.emit("u1", "new_message", {"id": 1})

    assert delivered == 1
    assert registry.connections_for("u1") == (alive,)


@pytest.mark.asyncio
async def test_emit_to_users_targets_each_user_once():
    registry = ConnectionRegistry()
    connection = _connection("u1")
    registry.register(connection)

    delivered = await registry.emit_to_users(["u1", "u1"], "new_message", {"id": 7})

    assert delivered == 1
    assert len(connection.websocket.sent) == 1


@pytest.mark.asyncio
async def test_close_all():
    registry = ConnectionRegistry()
    connections = [_connection("u1"), _connection("u2")]
    for connection in connections:
        registry.register(connection)

    await registry.close_all()

    assert registry.connection_count() == 0
    for connection in connections:
        assert connection.state is ConnectionState.CLOSED
        assert connection.websocket.close_code == 1001
