"""
Service for accounts: registration, login, profile updates, roles and cascading deletes.
"""

import os
from typing import Any, Dict, List, Optional, Tuple

import aiofiles.os

from csvhub.core.security import create_access_token, get_password_hash, verify_password
from csvhub.exceptions import AuthenticationError, NotFoundError, ValidationError
from csvhub.storage.context import StorageContext
from csvhub.storage.records import FileRecord, UserRecord
from csvhub.utils.logging import get_logger

logger = get_logger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


def _validate_username(username: Optional[str]) -> str:
    username = (username or "").strip()
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters")
    return username


def _validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


class UserService:
    """User management on top of the record store, with deletes cascading to both stores."""

    def __init__(self, storage: StorageContext):
        self.storage = storage
        self.records = storage.record_store

    def _log_prefix(self, user_id: Optional[int] = None) -> str:
        """Generate log prefix."""
        parts = ["[UserService]"]
        if user_id is not None:
            parts.append(f"[user={user_id}]")
        return " | ".join(parts)

    async def register(self, username: str, password: str, is_admin: bool = False) -> UserRecord:
        """
        Create an account.

        Raises:
            ValidationError: Username shorter than 3 or password shorter than 6 characters
            ConflictError: Username already taken
        """
        username = _validate_username(username)
        password = _validate_password(password)
        user = await self.records.create_user(username, get_password_hash(password), is_admin=is_admin)
        logger.info(f"{self._log_prefix(user.id)} | Registered {username} (admin={is_admin})")
        return user

    async def authenticate(self, username: str, password: str) -> UserRecord:
        user = await self.records.get_user_by_username((username or "").strip())
        if user is None or not verify_password(password or "", user.password_hash):
            raise AuthenticationError("Invalid username or password")
        return user

    async def login(self, username: str, password: str) -> Tuple[UserRecord, str]:
        """Check credentials and issue an access token."""
        user = await self.authenticate(username, password)
        token = create_access_token(user.id)
        logger.info(f"{self._log_prefix(user.id)} | Logged in")
        return user, token

    async def get_user(self, user_id: int) -> UserRecord:
        user = await self.records.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found", resource="user", resource_id=user_id)
        return user

    async def list_users(self) -> List[UserRecord]:
        return await self.records.list_users()

    async def count_files(self, user_id: int) -> int:
        """Files owned by the user in both stores."""
        total = 0
        for backend in self.storage.backends:
            total += await backend.count_user_files(user_id)
        return total

    async def get_user_details(self, user_id: int) -> Dict[str, Any]:
        user = await self.get_user(user_id)
        return {"user": user.to_dict(), "csvFileCount": await self.count_files(user_id)}

    async def update_user(
        self,
        user_id: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        is_admin: Optional[bool] = None,
    ) -> UserRecord:
        """
        Update username, password and/or role.

        Raises:
            NotFoundError: Unknown user
            ValidationError: Nothing to update, or a field fails validation
            ConflictError: New username already taken
        """
        await self.get_user(user_id)

        fields: Dict[str, Any] = {}
        if username:
            fields["username"] = _validate_username(username)
        if password:
            fields["password_hash"] = get_password_hash(_validate_password(password))
        if is_admin is not None:
            fields["is_admin"] = bool(is_admin)
        if not fields:
            raise ValidationError("No fields to update")

        user = await self.records.update_user(user_id, **fields)
        if user is None:
            raise NotFoundError("User not found", resource="user", resource_id=user_id)
        logger.info(f"{self._log_prefix(user_id)} | Updated {', '.join(sorted(fields))}")
        return user

    async def delete_user(self, user_id: int) -> None:
        """Delete the user with every file, row and upload they own in either store."""
        await self.get_user(user_id)

        files: List[FileRecord] = []
        for backend in self.storage.backends:
            files.extend(await backend.list_files_for_user(user_id))

        removed_large = await self.storage.streamed_store.delete_user(user_id)
        await self.records.delete_user(user_id)

        upload_dir = self.storage.settings.resolved_upload_dir
        for record in files:
            path = upload_dir / os.path.basename(record.stored_filename)
            try:
                if await aiofiles.os.path.exists(path):
                    await aiofiles.os.remove(path)
            except OSError as e:
                logger.warning(f"{self._log_prefix(user_id)} | Could not remove upload {path}: {e}")

        logger.info(
            f"{self._log_prefix(user_id)} | Deleted user with {len(files)} file(s) "
            f"({removed_large} in the streamed store)"
        )

    async def ensure_admin_column(self) -> bool:
        """Add ``users.is_admin`` to databases created before roles existed. True if added."""
        columns = await self.records.query_all("PRAGMA table_info(users)")
        if any(column["name"] == "is_admin" for column in columns):
            return False
        await self.records.execute("ALTER TABLE users ADD COLUMN is_admin BOOLEAN NOT NULL DEFAULT 0")
        logger.info(f"{self._log_prefix()} | Added users.is_admin column")
        return True

    async def promote_first_user(self) -> Tuple[Optional[Dict[str, Any]], bool]:
        """
        Make the oldest account an admin unless an admin already exists.

        Returns:
            (user row, promoted) where user row is the existing admin or the promoted user,
            or None when there are no users
        """
        admin = await self.records.query_one(
            "SELECT id, username FROM users WHERE is_admin = 1 ORDER BY id LIMIT 1"
        )
        if admin is not None:
            return admin, False

        first = await self.records.query_one("SELECT id, username FROM users ORDER BY id ASC LIMIT 1")
        if first is None:
            return None, False

        await self.records.execute("UPDATE users SET is_admin = 1 WHERE id = :id", {"id": first["id"]})
        logger.info(f"{self._log_prefix(first['id'])} | Promoted {first['username']} to admin")
        return first, True
