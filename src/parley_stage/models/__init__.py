# src/parley_stage/models/__init__.py
"""SQLAlchemy models for the Parley application."""

from .keys import UserKey
from .message import Message
from .user import Follow, User

__all__ = [
    "Follow",
    "Message",
    "User",
    "UserKey",
]
