"""
CSVData repository for row storage in the record store.
"""

from typing import List, Optional, Sequence

from sqlalchemy import func, insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from csvhub.database.models.csv_data import CSVData
from csvhub.storage.records import CSVRow
from csvhub.utils.logging import get_logger

logger = get_logger("csv_data_repository")


def _to_row(model: CSVData) -> CSVRow:
    return CSVRow.from_log_dict({
        "file_id": model.file_id,
        "row_number": model.row_number,
        "row_data": model.row_data,
        "is_header": model.is_header,
    })


class CSVDataRepository:
    """Repository for CSVData model operations."""

    @staticmethod
    async def insert_rows(db: AsyncSession, rows: Sequence[CSVRow]) -> int:
        """Insert rows with a single executemany."""
        if not rows:
            return 0
        payload = []
        for row in rows:
            values = row.to_log_dict()
            values["is_header"] = row.is_header
            payload.append(values)
        await db.execute(insert(CSVData), payload)
        return len(payload)

    @staticmethod
    async def get_header(db: AsyncSession, file_id: int) -> Optional[CSVRow]:
        """Get the header row of a file."""
        result = await db.execute(
            select(CSVData)
            .filter(CSVData.file_id == file_id, CSVData.is_header.is_(True))
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return _to_row(model) if model else None

    @staticmethod
    async def get_row(db: AsyncSession, file_id: int, row_number: int) -> Optional[CSVRow]:
        """Get a row by its row number."""
        result = await db.execute(
            select(CSVData)
            .filter(CSVData.file_id == file_id, CSVData.row_number == row_number)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return _to_row(model) if model else None

    @staticmethod
    async def count_data_rows(db: AsyncSession, file_id: int) -> int:
        """Count non-header rows of a file."""
        result = await db.execute(
            select(func.count(CSVData.id))
            .filter(CSVData.file_id == file_id, CSVData.is_header.is_(False))
        )
        return result.scalar() or 0

    @staticmethod
    async def list_page(db: AsyncSession, file_id: int, limit: int, offset: int) -> List[CSVRow]:
        """List data rows in row-number order."""
        result = await db.execute(
            select(CSVData)
            .filter(CSVData.file_id == file_id, CSVData.is_header.is_(False))
            .order_by(CSVData.row_number)
            .limit(limit)
            .offset(offset)
        )
        return [_to_row(model) for model in result.scalars().all()]

    @staticmethod
    async def list_after(db: AsyncSession, file_id: int, after_row: int, limit: int) -> List[CSVRow]:
        """Keyset page: data rows with row_number greater than ``after_row``."""
        result = await db.execute(
            select(CSVData)
            .filter(
                CSVData.file_id == file_id,
                CSVData.is_header.is_(False),
                CSVData.row_number > after_row,
            )
            .order_by(CSVData.row_number)
            .limit(limit)
        )
        return [_to_row(model) for model in result.scalars().all()]
