# src/parley_stage/api/v1/endpoints/chat.py
"""End-to-end encrypted chat endpoints for the Parley API."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Body, Response, WebSocket, status

from parley_stage.api.v1.dependencies import (
    ChatChannelDep,
    CipherDep,
    CurrentUserDep,
    SessionDep,
)
from parley_stage.core.errors import DecryptionFailedError, ForbiddenError, NotFoundError
from parley_stage.schemas.chat import (
    HistoryMessageResponse,
    HistoryRequest,
    KeyPairResponse,
    KeyRequest,
    PublicKeyResponse,
)
from parley_stage.services.chat import ChatService
from parley_stage.services.keys import KeyManager

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/keys", response_model=KeyPairResponse)
async def generate_keys(
    payload: KeyRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    cipher: CipherDep,
) -> KeyPairResponse:
    """Issue the caller's keypair, or recover it when it already exists.

    The private key is returned in plaintext; the server keeps only the
    password-wrapped copy.
    """
    manager = KeyManager(ChatService(db), cipher)
    pair = await asyncio.to_thread(manager.generate_keys, current_user.id, payload.password)
    return KeyPairResponse(public_key=pair.public_key, private_key=pair.private_key)


@router.post("/keys/rotate", response_model=KeyPairResponse)
async def rotate_keys(
    payload: KeyRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    cipher: CipherDep,
) -> KeyPairResponse:
    """Replace the caller's keypair. Earlier messages to the caller become unreadable."""
    manager = KeyManager(ChatService(db), cipher)
    pair = await asyncio.to_thread(manager.rotate_keys, current_user.id, payload.password)
    return KeyPairResponse(public_key=pair.public_key, private_key=pair.private_key)


@router.get("/keys/{user_id}", response_model=PublicKeyResponse)
async def get_public_key(
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    cipher: CipherDep,
) -> PublicKeyResponse:
    """Return a user's public key."""
    public_key = KeyManager(ChatService(db), cipher).get_public_key(user_id)
    return PublicKeyResponse(user_id=user_id, public_key=public_key)


@router.post("/history/{user_id}", response_model=list[HistoryMessageResponse])
async def get_chat_history(
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
    cipher: CipherDep,
    payload: HistoryRequest | None = Body(None),
) -> list[HistoryMessageResponse]:
    """Return the conversation with ``user_id``, oldest first.

    With a password, messages received by the caller are decrypted with the
    caller's unwrapped private key. Messages the caller sent stay encrypted:
    they are sealed for the receiver only.
    """
    store = ChatService(db)
    if not store.can_users_chat(current_user.id, user_id):
        raise ForbiddenError("Users must follow each other to chat")

    messages = [
        HistoryMessageResponse.model_validate(message)
        for message in store.get_chat_history(current_user.id, user_id)
    ]
    if payload is None or payload.password is None:
        return messages

    manager = KeyManager(store, cipher)
    private_key = await asyncio.to_thread(
        manager.unwrap_private_key, current_user.id, payload.password
    )
    for message in messages:
        if message.receiver_id != current_user.id:
            continue
        try:
            message.plaintext = cipher.decrypt_message(message.content, private_key)
        except DecryptionFailedError as exc:
            message.decryption_error = exc.message
    return messages


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Response:
    """Soft-delete a message the caller sent."""
    if ChatService(db).delete_message(message_id, current_user.id) is None:
        raise NotFoundError("Message not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, channel: ChatChannelDep) -> None:
    """Real-time chat channel; see :mod:`parley_stage.services.chat_channel`."""
    await channel.serve(websocket)
