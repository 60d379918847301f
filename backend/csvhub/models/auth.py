"""
Pydantic models for authentication endpoints.
"""

from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Registration payload."""

    username: str = Field(..., min_length=3, description="Unique username")
    password: str = Field(..., min_length=6, description="Plain password, hashed before storage")


class LoginRequest(BaseModel):
    """Login payload."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserPublic(BaseModel):
    """User as returned by the API (never includes the password hash)."""

    id: int
    username: str
    is_admin: bool = False
    created_at: Optional[str] = None


class RegisterResponse(BaseModel):
    message: str
    userId: int


class LoginResponse(BaseModel):
    message: str
    token: str
    token_type: str = "bearer"
    user: UserPublic


class ProfileResponse(BaseModel):
    user: UserPublic
