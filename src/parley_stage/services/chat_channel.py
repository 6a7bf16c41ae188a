# src/parley_stage/services/chat_channel.py
"""Real-time chat channel served over WebSockets.

Every frame is a JSON object ``{"event": str, "data": ...}``. The first frame
from the client must be a ``handshake`` carrying a bearer token; only after
it validates is the connection registered for fan-out. Per-event failures
are reported back as ``error`` events and never close the connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractContextManager
from typing import Any, Final, TypeVar

from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.websockets import WebSocketDisconnect

from parley_stage.core.errors import (
    BadRequestError,
    ChatError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from parley_stage.core.security import decode_access_token
from parley_stage.core.settings import settings
from parley_stage.models import Message
from parley_stage.schemas.chat import HandshakePayload, MessageResponse, SendMessagePayload, SocketFrame
from parley_stage.services.chat import ChatService
from parley_stage.services.cipher import MessageCipher
from parley_stage.services.connections import (
    ChatConnection,
    ConnectionRegistry,
    ConnectionState,
    SocketLike,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
SessionScope = Callable[[], AbstractContextManager[Session]]
EventHandler = Callable[[ChatConnection, Any], Awaitable[None]]

WS_POLICY_VIOLATION: Final[int] = 1008

AUTHENTICATION_ERROR: Final[str] = "Authentication error"
NOT_MUTUAL_FOLLOWERS: Final[str] = "Users must follow each other to chat"
RECEIVER_HAS_NO_KEY: Final[str] = "Receiver has no public key"
INVALID_PAYLOAD: Final[str] = "Invalid payload"

FAILURE_MESSAGES: Final[dict[str, str]] = {
    "start_chat": "Failed to start chat",
    "send_message": "Failed to send message",
}


def serialize_message(message: Message) -> dict[str, Any]:
    """Serialize a Message into its wire form."""
    return MessageResponse.model_validate(message).model_dump(mode="json")


class ChatChannel:
    """Authenticates chat sockets and dispatches their events.

    Args:
        registry: Registry of active connections, owned by the application
        session_scope: Factory returning a context manager that yields a database session
        cipher: Cipher used to encrypt message bodies for their receiver
        handshake_timeout: Seconds a client has to send its handshake frame
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        session_scope: SessionScope,
        cipher: MessageCipher,
        *,
        handshake_timeout: float | None = None,
    ) -> None:
        self.registry = registry
        self.cipher = cipher
        self._session_scope = session_scope
        self._handshake_timeout = (
            handshake_timeout
            if handshake_timeout is not None
            else settings.chat_handshake_timeout_seconds
        )
        self._handlers: dict[str, EventHandler] = {
            "start_chat": self.start_chat,
            "send_message": self.send_message,
        }

    # --- Store access ---------------------------------------------------------------
    def _run_with_store(self, operation: Callable[[ChatService], T]) -> T:
        with self._session_scope() as db:
            return operation(ChatService(db))

    async def _with_store(self, operation: Callable[[ChatService], T]) -> T:
        """Run ``operation`` against a fresh session in a worker thread."""
        return await asyncio.to_thread(self._run_with_store, operation)

    # --- Connection lifecycle -------------------------------------------------------
    async def serve(self, websocket: SocketLike) -> None:
        """Drive one socket from accept to close."""
        connection = ChatConnection(websocket)
        await websocket.accept()
        connection.state = ConnectionState.AUTHENTICATING

        try:
            connection.user_id = await self._authenticate(websocket)
        except WebSocketDisconnect:
            connection.state = ConnectionState.CLOSED
            return
        except (ChatError, TimeoutError) as exc:
            logger.info("Rejected chat connection %s: %s", connection.connection_id, exc)
            await self._reject(connection)
            return
        except Exception:
            logger.exception("Handshake failed for connection %s", connection.connection_id)
            await self._reject(connection)
            return

        connection.state = ConnectionState.ACTIVE
        self.registry.register(connection)
        logger.info("User connected: %s", connection.user_id)

        try:
            await connection.emit("connected", {"user_id": connection.user_id})
            while True:
                raw = await self._receive_text(websocket)
                if raw is None:
                    await self._emit_error(connection, INVALID_PAYLOAD)
                    continue
                await self.dispatch(connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            self.registry.unregister(connection)
            connection.state = ConnectionState.CLOSED
            logger.info("User disconnected: %s", connection.user_id)

    @staticmethod
    async def _receive_text(websocket: SocketLike) -> str | None:
        """Return the next text frame, or None for a frame without text (e.g. binary)."""
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(code=message.get("code", 1000), reason=message.get("reason"))
        text = message.get("text")
        return text if isinstance(text, str) else None

    async def _authenticate(self, websocket: SocketLike) -> str:
        raw = await asyncio.wait_for(self._receive_text(websocket), timeout=self._handshake_timeout)
        if raw is None:
            raise BadRequestError(INVALID_PAYLOAD)
        frame = self._parse_frame(raw)
        if frame.event != "handshake":
            raise UnauthorizedError("Handshake required")
        try:
            payload = HandshakePayload.model_validate(frame.data)
        except ValidationError as err:
            raise UnauthorizedError("Missing token") from err

        user_id = decode_access_token(payload.token)
        if not await self._with_store(lambda store: store.user_exists(user_id)):
            raise UnauthorizedError("User not found")
        return user_id

    async def _reject(self, connection: ChatConnection) -> None:
        try:
            await connection.emit("error", {"message": AUTHENTICATION_ERROR})
            await connection.websocket.close(code=WS_POLICY_VIOLATION)
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Peer left before rejection completed: %s", exc)
        finally:
            connection.state = ConnectionState.CLOSED

    async def close(self) -> None:
        """Close every live connection; used at application shutdown."""
        await self.registry.close_all()

    # --- Dispatch -------------------------------------------------------------------
    @staticmethod
    def _parse_frame(raw: str) -> SocketFrame:
        try:
            return SocketFrame.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as err:
            raise BadRequestError(INVALID_PAYLOAD) from err

    async def dispatch(self, connection: ChatConnection, raw: str) -> None:
        """Handle one client frame, converting every failure into an ``error`` event."""
        try:
            frame = self._parse_frame(raw)
        except BadRequestError as exc:
            await self._emit_error(connection, exc.message)
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            await self._emit_error(connection, f"Unknown event: {frame.event}")
            return

        try:
            await handler(connection, frame.data)
        except ChatError as exc:
            await self._emit_error(connection, exc.message)
        except Exception:
            logger.exception(
                "Unhandled error in %s for user %s", frame.event, connection.user_id
            )
            await self._emit_error(connection, FAILURE_MESSAGES[frame.event])

    async def _emit_error(self, connection: ChatConnection, message: str) -> None:
        try:
            await connection.emit("error", {"message": message})
        except RuntimeError as exc:
            logger.debug("Could not deliver error to %s: %s", connection.connection_id, exc)

    # --- Events ---------------------------------------------------------------------
    @staticmethod
    def _require_user(connection: ChatConnection) -> str:
        if connection.user_id is None:
            raise UnauthorizedError(AUTHENTICATION_ERROR)
        return connection.user_id

    async def start_chat(self, connection: ChatConnection, data: Any) -> None:
        """Send the conversation history with ``data`` (a receiver id) to this connection."""
        if not isinstance(data, str) or not data:
            raise BadRequestError(INVALID_PAYLOAD)
        user_id, receiver_id = self._require_user(connection), data

        if not await self._with_store(lambda store: store.can_users_chat(user_id, receiver_id)):
            raise ForbiddenError(NOT_MUTUAL_FOLLOWERS)

        history = await self._with_store(
            lambda store: [
                serialize_message(message)
                for message in store.get_chat_history(user_id, receiver_id)
            ]
        )
        await connection.emit("chat_history", history)

    async def send_message(self, connection: ChatConnection, data: Any) -> None:
        """Encrypt, persist and fan out a message to both participants.

        The follow relationship is checked again for every message since it
        can change during a session.
        """
        try:
            payload = SendMessagePayload.model_validate(data)
        except ValidationError as err:
            raise BadRequestError(INVALID_PAYLOAD) from err
        user_id, receiver_id = self._require_user(connection), payload.receiver_id

        if not await self._with_store(lambda store: store.can_users_chat(user_id, receiver_id)):
            raise ForbiddenError(NOT_MUTUAL_FOLLOWERS)

        public_key = await self._with_store(lambda store: store.get_user_public_key(receiver_id))
        if public_key is None:
            raise NotFoundError(RECEIVER_HAS_NO_KEY)

        ciphertext = self.cipher.encrypt_message(payload.content, public_key)
        message = await self._with_store(
            lambda store: serialize_message(store.store_message(user_id, receiver_id, ciphertext))
        )

        # The sender may have disconnected meanwhile; the stored message stays valid.
        await self.registry.emit_to_users((user_id, receiver_id), "new_message", message)
