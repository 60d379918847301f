"""
FastAPI dependencies: storage handles, services and the authenticated user.
"""

from typing import AsyncIterator, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from csvhub.config import Settings, get_settings
from csvhub.core.security import decode_access_token
from csvhub.exceptions import AuthenticationError, PermissionDeniedError
from csvhub.services.ingestion_service import IngestionService
from csvhub.services.row_access_service import RowAccessService
from csvhub.services.user_service import UserService
from csvhub.storage.context import StorageContext, open_storage
from csvhub.storage.records import UserRecord

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


async def get_storage(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[StorageContext]:
    """
    Both stores for the duration of one request.

    The record store is opened per request; the streamed store is the application's
    shared instance from the lifespan.
    """
    streamed_store = getattr(request.app.state, "streamed_store", None)
    async with open_storage(settings, streamed_store=streamed_store) as storage:
        yield storage


def get_user_service(storage: StorageContext = Depends(get_storage)) -> UserService:
    return UserService(storage)


def get_ingestion_service(storage: StorageContext = Depends(get_storage)) -> IngestionService:
    return IngestionService(storage)


def get_row_access_service(storage: StorageContext = Depends(get_storage)) -> RowAccessService:
    return RowAccessService(storage)


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    storage: StorageContext = Depends(get_storage),
) -> UserRecord:
    """
    Resolve the bearer token to a user.

    Raises:
        AuthenticationError: Missing, invalid or expired token, or the user no longer exists
    """
    if not token:
        raise AuthenticationError("Access token required")

    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid or expired token")

    user = await storage.record_store.get_user_by_id(user_id)
    if user is None:
        raise AuthenticationError("Invalid or expired token")
    return user


async def require_admin(current_user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if not current_user.is_admin:
        raise PermissionDeniedError("Admin privileges required")
    return current_user


def ensure_self_or_admin(current_user: UserRecord, user_id: int) -> None:
    """Users may act on their own account; admins on any account."""
    if current_user.id != user_id and not current_user.is_admin:
        raise PermissionDeniedError("Not allowed to access this user")
