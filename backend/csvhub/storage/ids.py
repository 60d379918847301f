"""
File id allocation shared by both storage backends.
"""

from sqlalchemy import insert

from csvhub.database.models.file_id_sequence import FileIdSequence
from csvhub.storage.record_store import RecordStore
from csvhub.storage.records import BackendKind
from csvhub.utils.logging import get_logger

logger = get_logger("file_ids")


class FileIdAllocator:
    """
    Mints file ids from the record store's ``file_id_sequence`` table.

    The table is AUTOINCREMENT, so an id is never handed out twice even after the
    file that used it has been deleted, whichever backend held it.
    """

    def __init__(self, record_store: RecordStore):
        self.record_store = record_store

    async def allocate(self, backend: BackendKind) -> int:
        async with self.record_store.session() as db:
            result = await db.execute(insert(FileIdSequence).values(backend=backend.value))
            file_id = result.inserted_primary_key[0]
        logger.debug(f"[FileIdAllocator] | file_id={file_id} | backend={backend.value}")
        return int(file_id)
