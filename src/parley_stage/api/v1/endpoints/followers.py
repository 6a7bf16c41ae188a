# src/parley_stage/api/v1/endpoints/followers.py
"""Follow graph endpoints for the Parley API."""

from __future__ import annotations

from fastapi import APIRouter

from parley_stage.api.v1.dependencies import CurrentUserDep, SessionDep
from parley_stage.schemas.user import FollowResponse
from parley_stage.services.followers import FollowService

router = APIRouter(prefix="/followers", tags=["followers"])


@router.post("/follow/{user_id}", response_model=FollowResponse)
async def follow_user(user_id: str, current_user: CurrentUserDep, db: SessionDep) -> FollowResponse:
    """Follow a user by their ID."""
    FollowService(db).follow_user(current_user.id, user_id)
    return FollowResponse(message="Successfully followed user")


@router.post("/unfollow/{user_id}", response_model=FollowResponse)
async def unfollow_user(
    user_id: str, current_user: CurrentUserDep, db: SessionDep
) -> FollowResponse:
    """Unfollow a user by their ID."""
    FollowService(db).unfollow_user(current_user.id, user_id)
    return FollowResponse(message="Successfully unfollowed user")
