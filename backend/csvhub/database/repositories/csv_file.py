"""
CSVFile repository for uploaded file metadata.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete as sa_delete
from sqlalchemy import desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from csvhub.database.models.csv_data import CSVData
from csvhub.database.models.csv_file import CSVFile
from csvhub.utils.logging import get_logger

logger = get_logger("csv_file_repository")


class CSVFileRepository:
    """Repository for CSVFile model operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        file_id: int,
        user_id: int,
        filename: str,
        original_name: str,
        upload_date: Optional[datetime] = None
    ) -> CSVFile:
        """Create a file record with an id minted by the allocator."""
        csv_file = CSVFile(
            id=file_id,
            user_id=user_id,
            filename=filename,
            original_name=original_name,
            row_count=0,
            upload_date=upload_date or datetime.utcnow()
        )
        db.add(csv_file)
        await db.flush()
        await db.refresh(csv_file)
        logger.info(f"Created csv file: {csv_file.id} ({original_name})")
        return csv_file

    @staticmethod
    async def get_by_id(db: AsyncSession, file_id: int) -> Optional[CSVFile]:
        """Get file by ID."""
        result = await db.execute(select(CSVFile).filter(CSVFile.id == file_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_user_files(db: AsyncSession, user_id: int) -> List[CSVFile]:
        """List a user's files, newest upload first."""
        result = await db.execute(
            select(CSVFile)
            .filter(CSVFile.user_id == user_id)
            .order_by(desc(CSVFile.upload_date), desc(CSVFile.id))
        )
        return list(result.scalars().all())

    @staticmethod
    async def update_row_count(db: AsyncSession, file_id: int, row_count: int) -> bool:
        """Set the file's data row count."""
        csv_file = await CSVFileRepository.get_by_id(db, file_id)
        if not csv_file:
            return False
        csv_file.row_count = row_count
        await db.flush()
        return True

    @staticmethod
    async def delete(db: AsyncSession, file_id: int) -> bool:
        """Delete file by ID together with its rows."""
        await db.execute(sa_delete(CSVData).where(CSVData.file_id == file_id))
        result = await db.execute(sa_delete(CSVFile).where(CSVFile.id == file_id))
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info(f"Deleted csv file: {file_id}")
        return deleted

    @staticmethod
    async def delete_for_user(db: AsyncSession, user_id: int) -> int:
        """Delete every file (and row) owned by a user. Returns the number of files removed."""
        user_file_ids = select(CSVFile.id).filter(CSVFile.user_id == user_id)
        await db.execute(sa_delete(CSVData).where(CSVData.file_id.in_(user_file_ids)))
        result = await db.execute(sa_delete(CSVFile).where(CSVFile.user_id == user_id))
        return result.rowcount or 0
