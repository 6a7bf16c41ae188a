# src/parley_stage/services/__init__.py
"""Business logic services for the Parley application."""

from .chat import ChatService
from .chat_channel import ChatChannel
from .cipher import KeyPair, MessageCipher
from .connections import ChatConnection, ConnectionRegistry, ConnectionState
from .followers import FollowService
from .keys import KeyManager

__all__ = [
    "ChatChannel",
    "ChatConnection",
    "ChatService",
    "ConnectionRegistry",
    "ConnectionState",
    "FollowService",
    "KeyManager",
    "KeyPair",
    "MessageCipher",
]
