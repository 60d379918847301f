"""
Pydantic models for user management endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from csvhub.models.auth import UserPublic


class UserListResponse(BaseModel):
    users: List[UserPublic]


class UserDetailResponse(BaseModel):
    user: UserPublic
    csvFileCount: int


class UserUpdateRequest(BaseModel):
    """Fields left out are not changed. ``is_admin`` is honoured for admins only."""

    username: Optional[str] = Field(default=None, min_length=3)
    password: Optional[str] = Field(default=None, min_length=6)
    is_admin: Optional[bool] = None


class UserUpdateResponse(BaseModel):
    message: str
    user: UserPublic
