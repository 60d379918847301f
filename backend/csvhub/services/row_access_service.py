"""
Row access across both storage backends: paging, filtering, single rows, listing and deletes.
"""

import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiofiles.os
import pandas as pd

from csvhub.exceptions import NotFoundError, ValidationError
from csvhub.storage.backend import StorageBackend
from csvhub.storage.context import StorageContext
from csvhub.storage.records import CSVRow, FileRecord
from csvhub.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RowFilter:
    """Column filter: case-insensitive keyword and/or an inclusive date range."""
    column: Optional[str] = None
    keyword: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return bool(self.column) and bool(self.keyword or self.date_from or self.date_to)


@dataclass
class PageResult:
    """One page of rows plus pagination info."""
    file: FileRecord
    headers: List[str]
    rows: List[Dict[str, Any]]
    total_rows: int
    page: int
    page_size: int
    filtered: bool = False

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_rows / self.page_size) if self.page_size else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": {
                "id": self.file.id,
                "name": self.file.original_name,
                "uploadDate": self.file.upload_date.isoformat(),
                "totalRows": self.file.row_count or self.total_rows,
                "backend": self.file.backend.value,
            },
            "headers": self.headers,
            "data": self.rows,
            "pagination": {
                "currentPage": self.page,
                "pageSize": self.page_size,
                "totalRows": self.total_rows,
                "totalPages": self.total_pages,
            },
        }


@dataclass
class _FilterMask:
    column_index: int
    keyword: Optional[str] = None
    date_from: Optional[pd.Timestamp] = None
    date_to: Optional[pd.Timestamp] = None
    matched: int = 0
    page: List[CSVRow] = field(default_factory=list)


def _parse_bound(value: Optional[str], name: str) -> Optional[pd.Timestamp]:
    if not value:
        return None
    try:
        return pd.to_datetime(value, utc=True)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid {name}: {value}", {name: value}) from e


class RowAccessService:
    """Reads rows from whichever backend holds a file."""

    def __init__(self, storage: StorageContext):
        self.storage = storage
        self.settings = storage.settings

    def _log_prefix(self, file_id: Optional[int] = None, user_id: Optional[int] = None) -> str:
        """Generate log prefix."""
        parts = ["[RowAccessService]"]
        if user_id is not None:
            parts.append(f"[user={user_id}]")
        if file_id is not None:
            parts.append(f"[file={file_id}]")
        return " | ".join(parts)

    async def resolve(self, file_id: int, user_id: Optional[int] = None) -> Tuple[FileRecord, StorageBackend]:
        """
        Find a file's metadata: record store first, then the streamed store.

        Raises:
            NotFoundError: Missing, or owned by a different user
        """
        found = await self.storage.find_file(file_id)
        if found is None:
            raise NotFoundError("File not found", resource="csv_file", resource_id=file_id)
        record, backend = found
        if user_id is not None and record.user_id != user_id:
            raise NotFoundError("File not found", resource="csv_file", resource_id=file_id)
        return record, backend

    async def get_page(
        self,
        file_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
        row_filter: Optional[RowFilter] = None,
        user_id: Optional[int] = None,
    ) -> PageResult:
        """
        Get one page of a file's data rows.

        With an active ``row_filter`` the filter runs over every row before paging,
        so ``total_rows`` counts matches.
        """
        if page_size is None:
            page_size = self.settings.default_page_size
        if page < 1:
            raise ValidationError("page must be >= 1", {"page": page})
        if page_size < 1 or page_size > self.settings.max_page_size:
            raise ValidationError(
                f"pageSize must be between 1 and {self.settings.max_page_size}", {"pageSize": page_size}
            )

        record, backend = await self.resolve(file_id, user_id)
        headers = await backend.get_header(file_id) or []
        offset = (page - 1) * page_size

        if row_filter is not None and row_filter.is_active:
            rows, total_rows = await self._filtered_page(backend, file_id, headers, row_filter, page_size, offset)
            filtered = True
        else:
            rows = await backend.list_page(file_id, page_size, offset)
            total_rows = record.row_count or await backend.count_data_rows(file_id, exact=True)
            filtered = False

        logger.debug(
            f"{self._log_prefix(file_id, user_id)} | page={page} size={page_size} "
            f"rows={len(rows)} total={total_rows} filtered={filtered}"
        )
        return PageResult(
            file=record,
            headers=headers,
            rows=[row.as_mapping(headers) for row in rows],
            total_rows=total_rows,
            page=page,
            page_size=page_size,
            filtered=filtered,
        )

    async def _filtered_page(
        self,
        backend: StorageBackend,
        file_id: int,
        headers: List[str],
        row_filter: RowFilter,
        limit: int,
        offset: int,
    ) -> Tuple[List[CSVRow], int]:
        if row_filter.column not in headers:
            raise ValidationError(f"Unknown filter column: {row_filter.column}", {"filterColumn": row_filter.column})

        mask = _FilterMask(
            column_index=headers.index(row_filter.column),
            keyword=row_filter.keyword or None,
            date_from=_parse_bound(row_filter.date_from, "filterStartDate"),
            date_to=_parse_bound(row_filter.date_to, "filterEndDate"),
        )

        batch_size = self.settings.filter_scan_batch_size
        batch: List[CSVRow] = []
        async for row in backend.iter_rows(file_id, batch_size=batch_size):
            batch.append(row)
            if len(batch) >= batch_size:
                self._apply_mask(mask, batch, limit, offset)
                batch = []
        if batch:
            self._apply_mask(mask, batch, limit, offset)

        logger.info(
            f"{self._log_prefix(file_id)} | Filter on {row_filter.column!r} matched {mask.matched} rows"
        )
        return mask.page, mask.matched

    @staticmethod
    def _apply_mask(mask: _FilterMask, batch: Sequence[CSVRow], limit: int, offset: int) -> None:
        """Match one batch and keep the matches that land inside the requested page."""
        values = [
            row.fields[mask.column_index] if mask.column_index < len(row.fields) else ""
            for row in batch
        ]
        df = pd.DataFrame({"value": values})
        keep = pd.Series(True, index=df.index)

        if mask.keyword:
            keep &= df["value"].str.contains(mask.keyword, case=False, regex=False, na=False)
        if mask.date_from is not None or mask.date_to is not None:
            dates = pd.to_datetime(df["value"], errors="coerce", utc=True, format="mixed")
            keep &= dates.notna()
            if mask.date_from is not None:
                keep &= dates >= mask.date_from
            if mask.date_to is not None:
                keep &= dates <= mask.date_to

        for index in df.index[keep.to_numpy()]:
            if offset <= mask.matched < offset + limit:
                mask.page.append(batch[index])
            mask.matched += 1

    async def get_row(self, file_id: int, row_number: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """A single data row zipped with the header."""
        _, backend = await self.resolve(file_id, user_id)
        row = await backend.get_row(file_id, row_number) if row_number >= 1 else None
        if row is None or row.is_header:
            raise NotFoundError("Row not found", resource="csv_row", resource_id=row_number)

        headers = await backend.get_header(file_id) or []
        data = row.as_mapping(headers)
        data.pop("_rowNumber", None)
        return {"headers": headers, "data": data, "rowNumber": row.row_number}

    async def list_files_for_user(self, user_id: int) -> List[FileRecord]:
        """The user's files from both stores, newest upload first."""
        files: Dict[int, FileRecord] = {}
        for backend in self.storage.backends:
            for record in await backend.list_files_for_user(user_id):
                files.setdefault(record.id, record)
        return sorted(files.values(), key=lambda record: (record.upload_date, record.id), reverse=True)

    async def delete_file(self, file_id: int, user_id: Optional[int] = None) -> FileRecord:
        """Remove a file's metadata, its rows and its uploaded source file."""
        record, backend = await self.resolve(file_id, user_id)
        await backend.delete_file(file_id)
        await self._remove_upload(record)
        logger.info(f"{self._log_prefix(file_id, record.user_id)} | Deleted {record.original_name}")
        return record

    async def batch_delete_files(self, file_ids: Sequence[int], user_id: Optional[int] = None) -> int:
        """Delete several files; missing ones are logged and skipped."""
        if not file_ids:
            raise ValidationError("No files selected")

        deleted = 0
        for file_id in file_ids:
            try:
                await self.delete_file(int(file_id), user_id)
            except NotFoundError:
                logger.warning(f"{self._log_prefix(file_id, user_id)} | Not found, skipping")
                continue
            deleted += 1
        return deleted

    async def _remove_upload(self, record: FileRecord) -> None:
        path = self.settings.resolved_upload_dir / os.path.basename(record.stored_filename)
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            logger.warning(f"{self._log_prefix(record.id)} | Could not remove upload {path}: {e}")
