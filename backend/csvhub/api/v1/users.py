"""
User management endpoints. Admins manage everyone; users may read and update themselves.
"""

from fastapi import APIRouter, Depends

from csvhub.api.deps import ensure_self_or_admin, get_current_user, get_user_service, require_admin
from csvhub.exceptions import PermissionDeniedError
from csvhub.models.auth import UserPublic
from csvhub.models.csv_file import MessageResponse
from csvhub.models.user import UserDetailResponse, UserListResponse, UserUpdateRequest, UserUpdateResponse
from csvhub.services.user_service import UserService
from csvhub.storage.records import UserRecord

router = APIRouter()


@router.get("/", response_model=UserListResponse)
async def list_users(
    _admin: UserRecord = Depends(require_admin),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    users = await service.list_users()
    return UserListResponse(users=[UserPublic(**user.to_dict()) for user in users])


@router.get("/{user_id}", response_model=UserDetailResponse)
async def get_user(
    user_id: int,
    current_user: UserRecord = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> UserDetailResponse:
    """User details with the number of CSV files they own."""
    ensure_self_or_admin(current_user, user_id)
    details = await service.get_user_details(user_id)
    return UserDetailResponse(user=UserPublic(**details["user"]), csvFileCount=details["csvFileCount"])


@router.put("/{user_id}", response_model=UserUpdateResponse)
async def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    current_user: UserRecord = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> UserUpdateResponse:
    ensure_self_or_admin(current_user, user_id)
    if payload.is_admin is not None and not current_user.is_admin:
        raise PermissionDeniedError("Only admins can change roles")

    user = await service.update_user(
        user_id,
        username=payload.username,
        password=payload.password,
        is_admin=payload.is_admin,
    )
    return UserUpdateResponse(message="User updated successfully", user=UserPublic(**user.to_dict()))


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    _admin: UserRecord = Depends(require_admin),
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    """Delete a user together with all of their files in both stores."""
    await service.delete_user(user_id)
    return MessageResponse(message="User deleted successfully")
