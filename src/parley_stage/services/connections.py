# src/parley_stage/services/connections.py
"""Live chat connections and the per-user fan-out registry."""

from __future__ import annotations

import enum
import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class SocketLike(Protocol):
    """Subset of the Starlette WebSocket API the chat channel relies on."""

    async def accept(self) -> None: ...

    async def receive(self) -> dict[str, Any]: ...
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(eq=False)
class ChatConnection:
    """One accepted socket and the user it authenticated as."""

    websocket: SocketLike
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: ConnectionState = ConnectionState.CONNECTING
    user_id: str | None = None

    async def emit(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})


class ConnectionRegistry:
    """Maps user identifiers to their active connections.

    Only handlers running on the application's event loop mutate the
    registry, so it carries no lock. It is a volatile index: clients rebuild
    it by reconnecting after a restart.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[ChatConnection]] = defaultdict(set)

    def register(self, connection: ChatConnection) -> None:
        if connection.user_id is None:
            raise ValueError("Only authenticated connections can be registered")
        self._connections[connection.user_id].add(connection)
        logger.debug(
            "Registered connection %s for user %s", connection.connection_id, connection.user_id
        )

    def unregister(self, connection: ChatConnection) -> None:
        if connection.user_id is None:
            return
        bucket = self._connections.get(connection.user_id)
        if not bucket:
            return
        bucket.discard(connection)
        if not bucket:
            del self._connections[connection.user_id]
        logger.debug(
            "Unregistered connection %s for user %s", connection.connection_id, connection.user_id
        )

    def connections_for(self, user_id: str) -> tuple[ChatConnection, ...]:
        return tuple(self._connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self) -> int:
        return sum(len(bucket) for bucket in self._connections.values())

    async def emit(self, user_id: str, event: str, data: Any) -> int:
        """Send one event to every connection of ``user_id``.

        Connections that fail to accept the frame are dropped from the registry.

        Returns:
            Number of connections the event was delivered to
        """
        delivered = 0
        for connection in self.connections_for(user_id):
            try:
                await connection.emit(event, data)
            except Exception as exc:  # noqa: BLE001 - a dead peer must not stop fan-out
                logger.warning(
                    "Dropping connection %s for user %s after send failure: %s",
                    connection.connection_id,
                    user_id,
                    exc,
                )
                self.unregister(connection)
                continue
            delivered += 1
        return delivered

    async def emit_to_users(self, user_ids: Iterable[str], event: str, data: Any) -> int:
        """Fan one event out to several users, targeting each user id once."""
        delivered = 0
        for user_id in dict.fromkeys(user_ids):
            delivered += await self.emit(user_id, event, data)
        return delivered

    async def close_all(self, code: int = 1001) -> None:
        """Close every registered connection and empty the registry."""
        connections = [conn for bucket in self._connections.values() for conn in bucket]
        self._connections.clear()
        for connection in connections:
            connection.state = ConnectionState.CLOSED
            try:
                await connection.websocket.close(code=code)
            except Exception as exc:  # noqa: BLE001 - peer may already be gone
                logger.debug("Ignoring close failure for %s: %s", connection.connection_id, exc)
