"""
User repository for account management.
"""

from typing import List, Optional

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from csvhub.database.models.csv_file import CSVFile
from csvhub.database.models.user import User
from csvhub.utils.logging import get_logger

logger = get_logger("user_repository")


class UserRepository:
    """Repository for User model operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        username: str,
        password_hash: str,
        is_admin: bool = False
    ) -> User:
        """Create a new user."""
        user = User(username=username, password=password_hash, is_admin=is_admin)
        db.add(user)
        await db.flush()
        await db.refresh(user)
        logger.info(f"Created user: {user.id} ({username})")
        return user

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
        """Get user by ID."""
        result = await db.execute(select(User).filter(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_username(db: AsyncSession, username: str) -> Optional[User]:
        """Get user by username."""
        result = await db.execute(select(User).filter(User.username == username))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_users(db: AsyncSession) -> List[User]:
        """List all users, newest first."""
        result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def update(db: AsyncSession, user_id: int, **kwargs) -> Optional[User]:
        """Update user fields."""
        user = await UserRepository.get_by_id(db, user_id)
        if not user:
            return None

        for key, value in kwargs.items():
            if hasattr(user, key):
                setattr(user, key, value)

        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def delete(db: AsyncSession, user_id: int) -> bool:
        """Delete user by ID. Callers remove the user's files first."""
        result = await db.execute(sa_delete(User).where(User.id == user_id))
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info(f"Deleted user: {user_id}")
        return deleted

    @staticmethod
    async def count_files(db: AsyncSession, user_id: int) -> int:
        """Count the user's files in this store."""
        result = await db.execute(
            select(func.count(CSVFile.id)).filter(CSVFile.user_id == user_id)
        )
        return result.scalar() or 0
