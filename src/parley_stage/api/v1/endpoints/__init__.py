# src/parley_stage/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .chat import router as chat_router
from .followers import router as followers_router

__all__ = [
    "auth_router",
    "chat_router",
    "followers_router",
]
