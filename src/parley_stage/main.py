# src/parley_stage/main.py
"""Main entry point for the Parley application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from parley_stage.api.v1 import auth_router, chat_router, followers_router
from parley_stage.core.errors import ChatError
from parley_stage.core.settings import settings
from parley_stage.db.session import SessionLocal
from parley_stage.services.chat_channel import ChatChannel
from parley_stage.services.cipher import get_message_cipher
from parley_stage.services.connections import ConnectionRegistry

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Parley API",
    description="Social network chat with end-to-end encrypted direct messages",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(followers_router, prefix="/api/v1")
app.include_router(chat_router, prefix="/api/v1")


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Render domain errors as JSON with their mapped status code."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.on_event("startup")
async def on_startup() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.state.chat_channel = ChatChannel(
        ConnectionRegistry(),
        session_scope=SessionLocal,
        cipher=get_message_cipher(),
    )
    logger.info("Chat channel ready")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    channel: ChatChannel | None = getattr(app.state, "chat_channel", None)
    if channel:
        await channel.close()
        app.state.chat_channel = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Parley API",
        "version": settings.app_version,
        "description": "Social network chat with end-to-end encrypted direct messages",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("parley_stage.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
