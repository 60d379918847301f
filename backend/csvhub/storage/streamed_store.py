"""
Streamed file store: append-only JSON-lines logs for very large CSV files.

Layout under the store directory:

- ``records_<fileId>.log``: one JSON object per row,
  ``{"file_id", "row_number", "row_data", "is_header"}``
- ``csv_files.json``: file metadata index
- ``users.json``: owner index, one entry per user holding at least one file here

Appended rows sit in a per-file pending buffer until a debounce timer fires or the
buffer reaches ``flush_threshold_rows``. Reads consult the bounded row cache, then the
pending buffer, then fall back to a streaming scan of the log.
"""

import asyncio
import json
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

import aiofiles
import aiofiles.os

from csvhub.core.config import Settings
from csvhub.exceptions import NotFoundError, ParseError, StorageError
from csvhub.storage.records import BackendKind, CSVRow, FileRecord
from csvhub.utils.logging import get_logger

logger = get_logger("streamed_store")

FILES_INDEX = "csv_files.json"
USERS_INDEX = "users.json"


@dataclass
class _FileState:
    """In-memory state of one file's log."""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pending: List[CSVRow] = field(default_factory=list)
    cache: Dict[int, CSVRow] = field(default_factory=dict)
    header: Optional[CSVRow] = None
    cache_overflowed: bool = False
    warmed: bool = False
    exact_count: Optional[int] = None
    timer: Optional[asyncio.TimerHandle] = None
    warm_task: Optional[asyncio.Task] = None


class StreamedFileStore:
    """Filesystem-backed store for CSV files above the size threshold."""

    kind = BackendKind.STREAMED_STORE

    def __init__(self, base_dir: Path, settings: Settings):
        self.base_dir = Path(base_dir)
        self.flush_threshold_rows = settings.flush_threshold_rows
        self.flush_delay_seconds = settings.flush_delay_seconds
        self.max_cached_rows = settings.max_cached_rows
        self.cache_warm_rows = settings.cache_warm_rows
        self.load_wait_seconds = settings.load_wait_seconds

        self._files: Dict[int, FileRecord] = {}
        self._users: Dict[int, Dict[str, Any]] = {}
        self._states: Dict[int, _FileState] = {}
        self._background: Set[asyncio.Task] = set()
        self._index_lock = asyncio.Lock()
        self._ready = False
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    def log_path(self, file_id: int) -> Path:
        return self.base_dir / f"records_{file_id}.log"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Create the store directory and load both JSON indexes."""
        if self._closed:
            raise StorageError("Streamed store was closed; construct a new one")
        if self._ready:
            return

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            files = await self._read_index(self.base_dir / FILES_INDEX)
            users = await self._read_index(self.base_dir / USERS_INDEX)
        except OSError as e:
            logger.error(f"[StreamedStore] | Failed to open {self.base_dir}: {e}", exc_info=True)
            raise StorageError(f"Failed to open streamed store: {e}") from e

        self._files = {}
        for entry in files:
            try:
                record = FileRecord.from_dict(entry, BackendKind.STREAMED_STORE)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[StreamedStore] | Skipping bad file index entry {entry!r}: {e}")
                continue
            self._files[record.id] = record
        self._users = {int(entry["id"]): entry for entry in users if "id" in entry}

        self._ready = True
        logger.info(f"[StreamedStore] | Ready at {self.base_dir} | files={len(self._files)}")

    async def save(self) -> None:
        """Force every pending buffer to disk."""
        self._require_ready()
        for file_id in list(self._states):
            await self.flush(file_id)

    async def close(self) -> None:
        """Flush pending rows, cancel timers and tasks, release memory."""
        if not self._ready:
            self._closed = True
            return

        for state in self._states.values():
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None

        try:
            await self.save()
        finally:
            tasks = list(self._background)
            for state in self._states.values():
                if state.warm_task is not None and not state.warm_task.done():
                    tasks.append(state.warm_task)
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

            self._background.clear()
            self._states.clear()
            self._files.clear()
            self._users.clear()
            self._ready = False
            self._closed = True
            logger.debug(f"[StreamedStore] | Closed {self.base_dir}")

    def _require_ready(self) -> None:
        if not self._ready:
            raise StorageError("Streamed store not initialized. Call init() first.")

    # ------------------------------------------------------------------
    # JSON indexes
    # ------------------------------------------------------------------

    async def _read_index(self, path: Path) -> List[Dict[str, Any]]:
        if not await aiofiles.os.path.exists(path):
            return []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        if not content.strip():
            return []
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageError(f"Index file {path.name} is corrupt: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"Index file {path.name} is not a JSON array")
        return data

    async def _write_index(self, name: str, entries: List[Dict[str, Any]]) -> None:
        """Rewrite an index in full: temp file first, then an atomic replace."""
        path = self.base_dir / name
        tmp_path = path.with_name(f"{name}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(entries, ensure_ascii=False, indent=2))
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"[StreamedStore] | Failed to write {name}: {e}", exc_info=True)
            raise StorageError(f"Failed to write {name}: {e}") from e

    async def _persist_indexes(self) -> None:
        async with self._index_lock:
            await self._write_index(FILES_INDEX, [record.to_dict() for record in self._files.values()])
            await self._write_index(USERS_INDEX, list(self._users.values()))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def create_file(
        self,
        file_id: int,
        user_id: int,
        stored_filename: str,
        original_name: str,
        upload_date: Optional[datetime] = None,
        username: Optional[str] = None,
    ) -> FileRecord:
        self._require_ready()
        if file_id in self._files:
            raise StorageError(f"File id {file_id} already registered in the streamed store")

        record = FileRecord(
            id=file_id,
            user_id=user_id,
            stored_filename=stored_filename,
            original_name=original_name,
            row_count=0,
            upload_date=upload_date or datetime.utcnow(),
            backend=BackendKind.STREAMED_STORE,
        )
        self._files[file_id] = record

        owner = self._users.get(user_id)
        if owner is None:
            owner = {
                "id": user_id,
                "username": username,
                "created_at": datetime.utcnow().isoformat(),
                "file_count": 0,
            }
            self._users[user_id] = owner
        elif username:
            owner["username"] = username
        owner["file_count"] = int(owner.get("file_count", 0)) + 1

        # A brand-new log has no rows, so the exact count can be tracked from here on
        state = self._state(file_id)
        state.exact_count = 0
        state.warmed = True

        await self._persist_indexes()
        logger.info(f"[StreamedStore] | [file={file_id}] | Registered {original_name} for user {user_id}")
        return record

    async def get_file(self, file_id: int) -> Optional[FileRecord]:
        self._require_ready()
        return self._files.get(file_id)

    async def list_files_for_user(self, user_id: int) -> List[FileRecord]:
        self._require_ready()
        files = [record for record in self._files.values() if record.user_id == user_id]
        return sorted(files, key=lambda record: (record.upload_date, record.id), reverse=True)

    async def count_user_files(self, user_id: int) -> int:
        self._require_ready()
        return sum(1 for record in self._files.values() if record.user_id == user_id)

    async def update_row_count(self, file_id: int, row_count: int) -> bool:
        self._require_ready()
        record = self._files.get(file_id)
        if record is None:
            return False
        record.row_count = row_count
        await self._persist_indexes()
        return True

    async def delete_file(self, file_id: int) -> bool:
        """Drop a file's metadata, buffers, cache, timer, warm task and log."""
        self._require_ready()
        record = self._files.pop(file_id, None)
        if record is None:
            return False

        state = self._states.pop(file_id, None)
        if state is not None:
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
            if state.warm_task is not None and not state.warm_task.done():
                state.warm_task.cancel()
            # Waits out an in-flight flush; later flushes see the file is gone
            async with state.lock:
                state.pending.clear()
                state.cache.clear()
                await self._remove_log(file_id)
        else:
            await self._remove_log(file_id)

        owner = self._users.get(record.user_id)
        if owner is not None:
            owner["file_count"] = int(owner.get("file_count", 1)) - 1
            if owner["file_count"] <= 0:
                del self._users[record.user_id]

        await self._persist_indexes()
        logger.info(f"[StreamedStore] | [file={file_id}] | Deleted")
        return True

    async def delete_user(self, user_id: int) -> int:
        """Delete every file the user owns here plus the owner index entry."""
        self._require_ready()
        file_ids = [record.id for record in self._files.values() if record.user_id == user_id]
        for file_id in file_ids:
            await self.delete_file(file_id)
        if self._users.pop(user_id, None) is not None:
            await self._persist_indexes()
        if file_ids:
            logger.info(f"[StreamedStore] | [user={user_id}] | Deleted {len(file_ids)} file(s)")
        return len(file_ids)

    async def _remove_log(self, file_id: int) -> None:
        path = self.log_path(file_id)
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            raise StorageError(f"Failed to remove {path.name}: {e}") from e

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def _state(self, file_id: int) -> _FileState:
        state = self._states.get(file_id)
        if state is None:
            state = _FileState()
            self._states[file_id] = state
        return state

    def _cache_rows(self, state: _FileState, rows: Sequence[CSVRow]) -> None:
        if state.cache_overflowed:
            return
        for row in rows:
            state.cache[row.row_number] = row
            if len(state.cache) >= self.max_cached_rows:
                state.cache.clear()
                state.cache_overflowed = True
                logger.info(
                    f"[StreamedStore] | [file={row.file_id}] | Cache ceiling of "
                    f"{self.max_cached_rows} rows reached, reads fall back to log scans"
                )
                return

    async def append_rows(self, file_id: int, rows: Sequence[CSVRow]) -> int:
        """Buffer rows for the file. They are readable immediately."""
        self._require_ready()
        if file_id not in self._files:
            raise NotFoundError(f"File {file_id} is not registered", resource="csv_file", resource_id=file_id)
        if not rows:
            return 0

        state = self._state(file_id)
        data_rows = 0
        for row in rows:
            if row.is_header:
                state.header = row
            else:
                data_rows += 1
        state.pending.extend(rows)
        self._cache_rows(state, [row for row in rows if not row.is_header])
        if state.exact_count is not None:
            state.exact_count += data_rows

        if len(state.pending) >= self.flush_threshold_rows:
            await self.flush(file_id)
        else:
            self._schedule_flush(file_id, state)
        return len(rows)

    def _schedule_flush(self, file_id: int, state: _FileState) -> None:
        if state.timer is not None:
            state.timer.cancel()
        loop = asyncio.get_running_loop()
        state.timer = loop.call_later(self.flush_delay_seconds, self._on_flush_timer, file_id)

    def _on_flush_timer(self, file_id: int) -> None:
        state = self._states.get(file_id)
        if state is not None:
            state.timer = None
        task = asyncio.get_running_loop().create_task(self._timed_flush(file_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _timed_flush(self, file_id: int) -> None:
        try:
            await self.flush(file_id)
        except StorageError as e:
            # No caller to raise to; rows stay pending for the next flush
            logger.error(f"[StreamedStore] | [file={file_id}] | Timed flush failed: {e}", exc_info=True)

    async def flush(self, file_id: int) -> None:
        """Append the file's pending rows to its log."""
        state = self._states.get(file_id)
        if state is None:
            return
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None

        async with state.lock:
            if file_id not in self._files:
                state.pending.clear()
                return
            if not state.pending:
                return

            rows = list(state.pending)
            payload = "".join(json.dumps(row.to_log_dict(), ensure_ascii=False) + "\n" for row in rows)
            try:
                async with aiofiles.open(self.log_path(file_id), "a", encoding="utf-8") as f:
                    await f.write(payload)
            except OSError as e:
                logger.error(f"[StreamedStore] | [file={file_id}] | Flush failed: {e}", exc_info=True)
                raise StorageError(f"Failed to append to records_{file_id}.log: {e}") from e

            # Rows appended while the write was in flight stay pending
            del state.pending[:len(rows)]
            logger.debug(f"[StreamedStore] | [file={file_id}] | Flushed {len(rows)} rows")

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def _scan(self, file_id: int) -> AsyncIterator[CSVRow]:
        """Stream rows from the log in write order, skipping corrupt lines."""
        path = self.log_path(file_id)
        if not await aiofiles.os.path.exists(path):
            return
        try:
            async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
                line_number = 0
                async for line in f:
                    line_number += 1
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield CSVRow.from_log_dict(self._decode_line(line, line_number))
                    except ParseError as e:
                        logger.warning(
                            f"[StreamedStore] | [file={file_id}] | Skipping corrupt line {line_number}: {e.message}"
                        )
        except OSError as e:
            raise StorageError(f"Failed to read records_{file_id}.log: {e}") from e

    @staticmethod
    def _decode_line(line: str, line_number: int) -> Dict[str, Any]:
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON: {e}", line_number=line_number, snippet=line) from e
        if not isinstance(data, dict):
            raise ParseError("Log line is not an object", line_number=line_number, snippet=line)
        return data

    async def _warm(self, file_id: int) -> None:
        """Load the header and the first ``cache_warm_rows`` data rows."""
        state = self._states.get(file_id)
        if state is None:
            return
        loaded = 0
        try:
            async with aclosing(self._scan(file_id)) as rows:
                async for row in rows:
                    if row.is_header:
                        if state.header is None:
                            state.header = row
                    elif loaded < self.cache_warm_rows:
                        if not state.cache_overflowed:
                            state.cache.setdefault(row.row_number, row)
                        loaded += 1
                    if state.header is not None and loaded >= self.cache_warm_rows:
                        break
        except StorageError as e:
            # Readers fall back to their own scans
            logger.warning(f"[StreamedStore] | [file={file_id}] | Warm load failed: {e}")
            return
        state.warmed = True
        logger.debug(f"[StreamedStore] | [file={file_id}] | Warmed cache with {loaded} rows")

    async def _wait_for_warm(self, file_id: int, state: _FileState) -> None:
        """Start the warm load if needed and wait for it, but only briefly."""
        if state.warmed:
            return
        if state.warm_task is None:
            state.warm_task = asyncio.get_running_loop().create_task(self._warm(file_id))
        if state.warm_task.done():
            return
        await asyncio.wait({state.warm_task}, timeout=self.load_wait_seconds)

    def _known_state(self, file_id: int) -> Optional[_FileState]:
        self._require_ready()
        if file_id not in self._files:
            return None
        return self._state(file_id)

    async def get_header(self, file_id: int) -> Optional[List[str]]:
        state = self._known_state(file_id)
        if state is None:
            return None
        if state.header is None:
            await self._wait_for_warm(file_id, state)
        if state.header is None:
            for row in state.pending:
                if row.is_header:
                    state.header = row
                    break
        if state.header is None:
            async with aclosing(self._scan(file_id)) as rows:
                async for row in rows:
                    if row.is_header:
                        state.header = row
                        break
        return list(state.header.fields) if state.header is not None else None

    async def get_row(self, file_id: int, row_number: int) -> Optional[CSVRow]:
        state = self._known_state(file_id)
        if state is None:
            return None
        if row_number == 0 and state.header is not None:
            return state.header
        if row_number in state.cache:
            return state.cache[row_number]

        await self._wait_for_warm(file_id, state)
        if row_number in state.cache:
            return state.cache[row_number]

        for row in state.pending:
            if row.row_number == row_number:
                return row

        async with aclosing(self._scan(file_id)) as rows:
            async for row in rows:
                if row.row_number == row_number:
                    return row
        return None

    async def count_data_rows(self, file_id: int, exact: bool = False) -> int:
        """Exact when a full scan ran before (or ``exact=True``), otherwise cache plus pending."""
        state = self._known_state(file_id)
        if state is None:
            return 0
        if state.exact_count is not None:
            return state.exact_count

        if not exact:
            numbers = set(state.cache)
            numbers.update(row.row_number for row in state.pending if not row.is_header)
            return len(numbers)

        count = 0
        last_seen = 0
        pending = list(state.pending)
        async with aclosing(self._scan(file_id)) as rows:
            async for row in rows:
                if not row.is_header:
                    count += 1
                    last_seen = max(last_seen, row.row_number)
        for row in pending + list(state.pending):
            if not row.is_header and row.row_number > last_seen:
                last_seen = row.row_number
                count += 1
        state.exact_count = count
        return count

    async def iter_rows(self, file_id: int, batch_size: int = 5_000) -> AsyncIterator[CSVRow]:
        """
        Every data row in write order: the log first, then unflushed rows.

        The log is streamed line by line, so ``batch_size`` only exists for parity with the
        record store and is ignored here. Pending rows are snapshotted before the scan: a
        flush that lands after the scan reached the end of the log cannot hide them.
        """
        state = self._known_state(file_id)
        if state is None:
            return
        pending = list(state.pending)
        last_seen = 0
        async with aclosing(self._scan(file_id)) as rows:
            async for row in rows:
                if row.is_header:
                    continue
                last_seen = max(last_seen, row.row_number)
                yield row
        # Rows appended during the scan and still buffered come after the snapshot
        for row in pending + list(state.pending):
            if not row.is_header and row.row_number > last_seen:
                last_seen = row.row_number
                yield row

    async def list_page(self, file_id: int, limit: int, offset: int) -> List[CSVRow]:
        """Data rows at positions ``[offset, offset + limit)``, stopping as soon as the page is full."""
        if limit <= 0:
            return []
        page: List[CSVRow] = []
        position = 0
        async with aclosing(self.iter_rows(file_id)) as rows:
            async for row in rows:
                if position >= offset:
                    page.append(row)
                    if len(page) >= limit:
                        break
                position += 1
        return page

    def pending_count(self, file_id: int) -> int:
        state = self._states.get(file_id)
        return len(state.pending) if state is not None else 0

    def has_pending_timer(self, file_id: int) -> bool:
        state = self._states.get(file_id)
        return state is not None and state.timer is not None
