"""Shared API dependencies for authentication and common functionality."""

from typing import Annotated

from fastapi import Depends, HTTPException, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from parley_stage.core.errors import UnauthorizedError
from parley_stage.core.security import decode_access_token
from parley_stage.db.session import get_db
from parley_stage.models import User
from parley_stage.services.chat_channel import ChatChannel
from parley_stage.services.cipher import MessageCipher, get_message_cipher

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        user_id = decode_access_token(credentials.credentials)
    except UnauthorizedError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_message_cipher_dep() -> MessageCipher:
    """Return the message cipher used by chat endpoints."""
    return get_message_cipher()


def get_chat_channel(websocket: WebSocket) -> ChatChannel:
    """Return the chat channel created at application startup."""
    channel: ChatChannel | None = getattr(websocket.app.state, "chat_channel", None)
    if channel is None:  # pragma: no cover - startup always installs one
        raise RuntimeError("Chat channel is not initialised")
    return channel


# Type aliases for common dependencies
CurrentUserDep = Annotated[User, Depends(get_current_user)]
CipherDep = Annotated[MessageCipher, Depends(get_message_cipher_dep)]
ChatChannelDep = Annotated[ChatChannel, Depends(get_chat_channel)]
