"""
Storage context: both stores plus the shared file id allocator, opened per request or command.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Tuple

from csvhub.core.config import Settings, get_settings
from csvhub.storage.backend import StorageBackend
from csvhub.storage.ids import FileIdAllocator
from csvhub.storage.record_store import RecordStore
from csvhub.storage.records import BackendKind, FileRecord
from csvhub.storage.streamed_store import StreamedFileStore
from csvhub.utils.logging import get_logger

logger = get_logger("storage_context")


@dataclass
class StorageContext:
    """Handles to both backends for the duration of one unit of work."""
    record_store: RecordStore
    streamed_store: StreamedFileStore
    file_ids: FileIdAllocator
    settings: Settings

    def backend(self, kind: BackendKind) -> StorageBackend:
        if kind == BackendKind.RECORD_STORE:
            return self.record_store
        return self.streamed_store

    @property
    def backends(self) -> List[StorageBackend]:
        """Lookup order: record store first, streamed store second."""
        return [self.record_store, self.streamed_store]

    async def find_file(self, file_id: int) -> Optional[Tuple[FileRecord, StorageBackend]]:
        """Resolve which backend holds a file."""
        for backend in self.backends:
            record = await backend.get_file(file_id)
            if record is not None:
                return record, backend
        return None


@asynccontextmanager
async def open_storage(
    settings: Optional[Settings] = None,
    streamed_store: Optional[StreamedFileStore] = None,
) -> AsyncIterator[StorageContext]:
    """
    Open the stores for one unit of work and close what was opened here on every exit path.

    The streamed store holds its indexes in memory, so a process must share one instance:
    the application passes the store it opened at startup as ``streamed_store``. A store
    passed in is left open on exit; one created here is closed with the context.

    Example:
        async with open_storage(settings, streamed_store=app.state.streamed_store) as storage:
            page = await RowAccessService(storage).get_page(file_id, 1, 100)
    """
    settings = settings or get_settings()
    record_store = RecordStore(settings.resolved_database_path)
    owns_streamed_store = streamed_store is None
    if owns_streamed_store:
        streamed_store = StreamedFileStore(settings.resolved_streamed_store_dir, settings)

    try:
        await record_store.init()
        if owns_streamed_store:
            await streamed_store.init()
        yield StorageContext(
            record_store=record_store,
            streamed_store=streamed_store,
            file_ids=FileIdAllocator(record_store),
            settings=settings,
        )
    finally:
        try:
            if owns_streamed_store:
                await streamed_store.close()
        finally:
            await record_store.close()
