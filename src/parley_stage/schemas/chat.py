"""Chat-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class KeyRequest(BaseModel):
    """Password used to wrap or unwrap the caller's private key."""

    password: str = Field(..., min_length=1, max_length=256)


class KeyPairResponse(BaseModel):
    """Plaintext keypair returned once to its owner."""

    public_key: str = Field(..., description="PEM-encoded RSA public key")
    private_key: str = Field(..., description="PEM-encoded PKCS8 RSA private key")


class PublicKeyResponse(BaseModel):
    user_id: str
    public_key: str


class HistoryRequest(BaseModel):
    """Optional password; when present, messages addressed to the caller are decrypted."""

    password: str | None = Field(None, min_length=1, max_length=256)


class MessageResponse(BaseModel):
    """Schema for a stored message as delivered to clients."""

    id: int
    sender_id: str
    receiver_id: str
    content: str = Field(..., description="Base64 RSA-OAEP ciphertext for the receiver")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HistoryMessageResponse(MessageResponse):
    plaintext: str | None = Field(
        None,
        description="Decrypted content, only for messages received by the caller",
    )
    decryption_error: str | None = Field(
        None,
        description="Why a received message could not be decrypted, if it could not",
    )


class SendMessagePayload(BaseModel):
    """``send_message`` event payload."""

    receiver_id: str = Field(..., alias="receiverId", min_length=1)
    content: str = Field(..., description="Plaintext body; may be empty")

    model_config = ConfigDict(populate_by_name=True)


class HandshakePayload(BaseModel):
    token: str = Field(..., min_length=1)


class SocketFrame(BaseModel):
    """Envelope for every frame exchanged over the chat WebSocket."""

    event: str = Field(..., min_length=1)
    data: Any = None
