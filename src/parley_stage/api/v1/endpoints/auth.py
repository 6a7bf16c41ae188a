# src/parley_stage/api/v1/endpoints/auth.py
"""Authentication endpoints for the Parley API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.exc import IntegrityError

from parley_stage.api.v1.dependencies import SessionDep
from parley_stage.core.errors import ConflictError
from parley_stage.core.security import create_access_token, hash_password, verify_password
from parley_stage.models import User
from parley_stage.schemas.user import LoginRequest, SignupRequest, TokenResponse

router = APIRouter(prefix="/auth", tags=["authentication"])
logger = logging.getLogger(__name__)


@router.post(
    "/signup",
    summary="Create an account",
    status_code=status.HTTP_201_CREATED,
    response_model=TokenResponse,
)
async def signup(payload: SignupRequest, db: SessionDep) -> TokenResponse:
    """Register a new account and return an access token."""
    if db.query(User.id).filter(User.username == payload.username).first() is not None:
        raise ConflictError("Username already taken")

    password_hash = await asyncio.to_thread(hash_password, payload.password)
    user = User(username=payload.username, password_hash=password_hash)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as err:
        db.rollback()
        raise ConflictError("Username already taken") from err
    db.refresh(user)

    logger.info("Created account %s", user.id)
    return TokenResponse(access_token=create_access_token(user.id), user_id=user.id)


@router.post(
    "/login",
    summary="Authenticate with username and password",
    response_model=TokenResponse,
)
async def login(payload: LoginRequest, db: SessionDep) -> TokenResponse:
    """Exchange valid credentials for an access token."""
    user = db.query(User).filter(User.username == payload.username).first()
    valid = user is not None and await asyncio.to_thread(
        verify_password, payload.password, user.password_hash
    )
    if user is None or not valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    return TokenResponse(access_token=create_access_token(user.id), user_id=user.id)
