"""User-related Pydantic schemas."""

from pydantic import BaseModel, Field


class SignupRequest(BaseModel):
    """Schema for account creation."""

    username: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8, max_length=256)


class LoginRequest(BaseModel):
    """Schema for login submissions."""

    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=256)


class TokenResponse(BaseModel):
    """Response returned after successful signup or login."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field("bearer", description="Token type (always 'bearer')")
    user_id: str = Field(..., description="Identifier of the authenticated user")


class FollowResponse(BaseModel):
    message: str
