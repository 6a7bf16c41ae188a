"""Domain error taxonomy shared by the HTTP and WebSocket surfaces."""

from __future__ import annotations

from fastapi import status


class ChatError(Exception):
    """Base class for expected, user-facing failures.

    Each subclass carries the HTTP status it maps to; the WebSocket channel
    ignores the status and forwards ``message`` as a scoped ``error`` event.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid payload"


class InvalidCredentialError(ChatError):
    """Raised when a password fails to unwrap key material or authenticate."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid password"


class UnauthorizedError(ChatError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class ForbiddenError(ChatError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Users must follow each other to chat"


class NotFoundError(ChatError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(ChatError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Already exists"


class DecryptionFailedError(ChatError):
    """Raised for corrupt ciphertext, a mismatched key, or failed padding checks."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Failed to decrypt message"


class PayloadTooLargeError(ChatError):
    """Raised when a plaintext exceeds what one RSA-OAEP block can carry."""

    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    default_message = "Message too large to encrypt"
