"""
Authentication endpoints: register, login, profile.
"""

from fastapi import APIRouter, Depends, status

from csvhub.api.deps import get_current_user, get_user_service
from csvhub.models.auth import (
    LoginRequest,
    LoginResponse,
    ProfileResponse,
    RegisterRequest,
    RegisterResponse,
    UserPublic,
)
from csvhub.services.user_service import UserService
from csvhub.storage.records import UserRecord
from csvhub.utils.logging import get_logger

logger = get_logger("auth_api")

router = APIRouter()


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    service: UserService = Depends(get_user_service),
) -> RegisterResponse:
    """Create an account. 409 when the username is taken."""
    user = await service.register(payload.username, payload.password)
    return RegisterResponse(message="User created successfully", userId=user.id)


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    service: UserService = Depends(get_user_service),
) -> LoginResponse:
    """Exchange credentials for a bearer token."""
    user, token = await service.login(payload.username, payload.password)
    return LoginResponse(message="Login successful", token=token, user=UserPublic(**user.to_dict()))


@router.get("/profile", response_model=ProfileResponse)
async def profile(current_user: UserRecord = Depends(get_current_user)) -> ProfileResponse:
    return ProfileResponse(user=UserPublic(**current_user.to_dict()))
