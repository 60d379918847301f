"""
Structural interface shared by the record store and the streamed file store.
"""

from datetime import datetime
from typing import AsyncIterator, List, Optional, Protocol, Sequence, runtime_checkable

from csvhub.storage.records import BackendKind, CSVRow, FileRecord


@runtime_checkable
class StorageBackend(Protocol):
    """File and row operations both backends provide."""

    kind: BackendKind

    async def init(self) -> None: ...

    async def save(self) -> None: ...

    async def close(self) -> None: ...

    async def create_file(
        self,
        file_id: int,
        user_id: int,
        stored_filename: str,
        original_name: str,
        upload_date: Optional[datetime] = None,
    ) -> FileRecord: ...

    async def get_file(self, file_id: int) -> Optional[FileRecord]: ...

    async def list_files_for_user(self, user_id: int) -> List[FileRecord]: ...

    async def count_user_files(self, user_id: int) -> int: ...

    async def update_row_count(self, file_id: int, row_count: int) -> bool: ...

    async def delete_file(self, file_id: int) -> bool: ...

    async def append_rows(self, file_id: int, rows: Sequence[CSVRow]) -> int: ...

    async def flush(self, file_id: int) -> None: ...

    async def get_header(self, file_id: int) -> Optional[List[str]]: ...

    async def get_row(self, file_id: int, row_number: int) -> Optional[CSVRow]: ...

    async def count_data_rows(self, file_id: int, exact: bool = ...) -> int: ...

    async def list_page(self, file_id: int, limit: int, offset: int) -> List[CSVRow]: ...

    def iter_rows(self, file_id: int, batch_size: int = ...) -> AsyncIterator[CSVRow]: ...
