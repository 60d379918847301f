"""
Service for spooling CSV uploads to disk and ingesting them into the chosen backend.
"""

import inspect
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiofiles
import aiofiles.os

from csvhub.exceptions import CSVHubError, IngestionError, ParseError, StorageError, ValidationError
from csvhub.storage.context import StorageContext
from csvhub.storage.records import BackendKind, CSVRow, FileRecord
from csvhub.storage.selector import choose_backend, size_bytes_to_mb
from csvhub.utils.csv_stream import iter_csv_records
from csvhub.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[["IngestionProgress"], Union[None, Awaitable[None]]]


@dataclass
class SpooledUpload:
    """An upload written to the upload directory."""
    path: Path
    stored_filename: str
    original_name: str
    size_bytes: int
    upload_seconds: float


@dataclass
class IngestionProgress:
    """Emitted after every flushed batch."""
    file_id: int
    rows_processed: int
    batches: int
    elapsed_seconds: float
    rows_per_second: float
    percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": self.file_id,
            "rows_processed": self.rows_processed,
            "batches": self.batches,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "rows_per_second": round(self.rows_per_second, 1),
            "percent": round(self.percent, 1),
        }


@dataclass
class IngestionMetrics:
    """Timing breakdown of one upload."""
    size_bytes: int = 0
    upload_seconds: float = 0.0
    parse_seconds: float = 0.0
    insert_seconds: float = 0.0

    @property
    def total_seconds(self) -> float:
        return self.upload_seconds + self.parse_seconds

    @property
    def upload_mb_per_second(self) -> float:
        total = self.total_seconds
        return size_bytes_to_mb(self.size_bytes) / total if total > 0 else 0.0

    def insert_rows_per_second(self, rows: int) -> float:
        return rows / self.insert_seconds if self.insert_seconds > 0 else float(rows)

    def to_dict(self, rows: int) -> Dict[str, str]:
        """Performance payload of the upload response."""
        return {
            "totalTime": f"{self.total_seconds:.2f}s",
            "fileUploadTime": f"{self.upload_seconds:.2f}s",
            "parseTime": f"{self.parse_seconds:.2f}s",
            "dbInsertTime": f"{self.insert_seconds:.2f}s",
            "uploadSpeed": f"{self.upload_mb_per_second:.2f} MB/s",
            "insertSpeed": f"{self.insert_rows_per_second(rows):.0f} rows/s",
        }


@dataclass
class IngestionResult:
    """Outcome of a completed ingestion."""
    file_id: int
    backend: BackendKind
    row_count: int
    skipped_records: int = 0
    batches: int = 0
    metrics: IngestionMetrics = field(default_factory=IngestionMetrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": self.file_id,
            "backend": self.backend.value,
            "row_count": self.row_count,
            "skipped_records": self.skipped_records,
            "batches": self.batches,
            "performance": self.metrics.to_dict(self.row_count),
        }


def stored_upload_name(original_name: str, now: Optional[datetime] = None) -> str:
    """``<basename>_<millis><ext>`` so repeated uploads of one name never clash."""
    base = os.path.basename(original_name or "upload.csv")
    stem, ext = os.path.splitext(base)
    millis = int((now or datetime.utcnow()).timestamp() * 1000)
    return f"{stem or 'upload'}_{millis}{ext or '.csv'}"


class IngestionService:
    """Streams an uploaded CSV into the record store or the streamed file store."""

    def __init__(self, storage: StorageContext):
        self.storage = storage
        self.settings = storage.settings

    def _log_prefix(self, file_id: Optional[int] = None, user_id: Optional[int] = None) -> str:
        """Generate log prefix."""
        parts = ["[IngestionService]"]
        if user_id is not None:
            parts.append(f"[user={user_id}]")
        if file_id is not None:
            parts.append(f"[file={file_id}]")
        return " | ".join(parts)

    def _batch_size(self, kind: BackendKind) -> int:
        if kind == BackendKind.STREAMED_STORE:
            return self.settings.streamed_batch_size
        return self.settings.record_batch_size

    async def spool_upload(self, upload: Any) -> SpooledUpload:
        """
        Write an upload (anything with ``filename`` and ``async read(n)``, e.g. FastAPI's
        UploadFile) to the upload directory in chunks.

        Raises:
            ValidationError: Missing file, not a ``.csv`` file, or larger than ``max_upload_size``
        """
        original_name = getattr(upload, "filename", None)
        if not original_name:
            raise ValidationError("No file uploaded")
        if Path(original_name).suffix.lower() != ".csv":
            raise ValidationError("Only CSV files are allowed", {"filename": original_name})

        upload_dir = self.settings.resolved_upload_dir
        upload_dir.mkdir(parents=True, exist_ok=True)
        stored_filename = stored_upload_name(original_name)
        path = upload_dir / stored_filename

        start = time.perf_counter()
        size_bytes = 0
        try:
            async with aiofiles.open(path, "wb") as out:
                while True:
                    chunk = await upload.read(self.settings.upload_chunk_size)
                    if not chunk:
                        break
                    size_bytes += len(chunk)
                    if size_bytes > self.settings.max_upload_size:
                        raise ValidationError(
                            "File exceeds the maximum upload size",
                            {"max_upload_size": self.settings.max_upload_size},
                        )
                    await out.write(chunk)
        except (ValidationError, OSError) as e:
            await self.remove_upload(stored_filename)
            if isinstance(e, OSError):
                raise StorageError(f"Failed to store upload: {e}") from e
            raise

        upload_seconds = time.perf_counter() - start
        logger.info(
            f"{self._log_prefix()} | Stored upload {original_name} as {stored_filename} "
            f"({size_bytes_to_mb(size_bytes):.2f} MB in {upload_seconds:.2f}s)"
        )
        return SpooledUpload(
            path=path,
            stored_filename=stored_filename,
            original_name=original_name,
            size_bytes=size_bytes,
            upload_seconds=upload_seconds,
        )

    async def remove_upload(self, stored_filename: str) -> None:
        """Delete a stored upload if it is still there."""
        path = self.settings.resolved_upload_dir / os.path.basename(stored_filename)
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            logger.warning(f"{self._log_prefix()} | Could not remove upload {path}: {e}")

    async def register_file(
        self,
        user_id: int,
        stored_filename: str,
        original_name: str,
        size_bytes: int,
        username: Optional[str] = None,
    ) -> FileRecord:
        """Pick the backend for the file's size, mint an id and create the file record."""
        kind = choose_backend(size_bytes_to_mb(size_bytes), self.settings.size_threshold_mb)
        file_id = await self.storage.file_ids.allocate(kind)

        if kind == BackendKind.STREAMED_STORE:
            record = await self.storage.streamed_store.create_file(
                file_id, user_id, stored_filename, original_name, username=username
            )
        else:
            record = await self.storage.record_store.create_file(file_id, user_id, stored_filename, original_name)

        logger.info(
            f"{self._log_prefix(file_id, user_id)} | Registered {original_name} "
            f"({size_bytes_to_mb(size_bytes):.2f} MB) in {kind.value}"
        )
        return record

    async def ingest(
        self,
        file_record: FileRecord,
        source_path: Union[str, Path],
        size_bytes: int,
        on_progress: Optional[ProgressCallback] = None,
        upload_seconds: float = 0.0,
    ) -> IngestionResult:
        """
        Parse the source file and write its rows to the file's backend in batches.

        The first record is the header (row 0); data rows are numbered from 1 in source
        order. Malformed records are skipped and counted.

        Raises:
            ValidationError: The file has no data rows (its record, rows and upload are removed)
            IngestionError: A storage failure stopped the ingestion part way
        """
        file_id = file_record.id
        backend = self.storage.backend(file_record.backend)
        batch_size = self._batch_size(file_record.backend)
        metrics = IngestionMetrics(size_bytes=size_bytes, upload_seconds=upload_seconds)

        skipped = 0

        def on_error(error: ParseError) -> None:
            nonlocal skipped
            skipped += 1
            logger.warning(f"{self._log_prefix(file_id)} | Skipping record: {error.message} | {error.details}")

        start = time.perf_counter()
        header_written = False
        row_number = 0
        persisted = 0
        batches = 0
        percent = 0.0
        batch: List[CSVRow] = []

        async def flush_batch(bytes_read: int) -> None:
            nonlocal persisted, batches, percent, batch
            insert_start = time.perf_counter()
            await backend.append_rows(file_id, batch)
            metrics.insert_seconds += time.perf_counter() - insert_start
            persisted += len(batch)
            batches += 1
            batch = []

            if size_bytes > 0:
                percent = max(percent, min(99.9, bytes_read / size_bytes * 100))
            elapsed = time.perf_counter() - start
            await self._emit(
                on_progress,
                IngestionProgress(
                    file_id=file_id,
                    rows_processed=persisted,
                    batches=batches,
                    elapsed_seconds=elapsed,
                    rows_per_second=persisted / elapsed if elapsed > 0 else float(persisted),
                    percent=percent,
                ),
            )
            logger.debug(f"{self._log_prefix(file_id)} | Batch {batches} | rows={persisted} | {percent:.1f}%")

        logger.info(f"{self._log_prefix(file_id, file_record.user_id)} | Starting ingestion into {backend.kind.value}")
        bytes_read = 0
        try:
            async for record in iter_csv_records(
                source_path,
                chunk_size=self.settings.csv_chunk_size,
                encoding=self.settings.csv_encoding,
                max_record_bytes=self.settings.max_record_bytes,
                on_error=on_error,
            ):
                bytes_read = record.bytes_read
                if not header_written:
                    await backend.append_rows(file_id, [CSVRow(file_id, 0, record.fields, is_header=True)])
                    header_written = True
                    continue

                row_number += 1
                batch.append(CSVRow(file_id, row_number, record.fields))
                if len(batch) >= batch_size:
                    await flush_batch(bytes_read)

            if batch:
                await flush_batch(bytes_read)
        except (StorageError, OSError) as e:
            logger.error(
                f"{self._log_prefix(file_id)} | Ingestion failed after {persisted} rows: {e}", exc_info=True
            )
            await self._record_partial(backend, file_id, persisted)
            raise IngestionError(f"Ingestion of file {file_id} failed: {e}", file_id=file_id, rows_persisted=persisted) from e

        if row_number == 0:
            logger.warning(f"{self._log_prefix(file_id)} | No data rows, removing file")
            await backend.delete_file(file_id)
            await self.remove_upload(file_record.stored_filename)
            raise ValidationError("CSV file is empty or has no data rows", {"file_id": file_id})

        try:
            await backend.update_row_count(file_id, row_number)
            await backend.save()
        except StorageError as e:
            raise IngestionError(f"Failed to finalize file {file_id}: {e}", file_id=file_id, rows_persisted=persisted) from e
        file_record.row_count = row_number

        metrics.parse_seconds = time.perf_counter() - start
        elapsed = metrics.parse_seconds
        await self._emit(
            on_progress,
            IngestionProgress(
                file_id=file_id,
                rows_processed=row_number,
                batches=batches,
                elapsed_seconds=elapsed,
                rows_per_second=row_number / elapsed if elapsed > 0 else float(row_number),
                percent=100.0,
            ),
        )

        result = IngestionResult(
            file_id=file_id,
            backend=file_record.backend,
            row_count=row_number,
            skipped_records=skipped,
            batches=batches,
            metrics=metrics,
        )
        self._log_performance_report(file_record, result)
        return result

    async def upload_and_ingest(
        self,
        user_id: int,
        upload: Any,
        username: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestionResult:
        """Spool the upload, register it and ingest it."""
        spooled = await self.spool_upload(upload)
        try:
            file_record = await self.register_file(
                user_id, spooled.stored_filename, spooled.original_name, spooled.size_bytes, username=username
            )
        except CSVHubError:
            await self.remove_upload(spooled.stored_filename)
            raise
        return await self.ingest(
            file_record,
            spooled.path,
            spooled.size_bytes,
            on_progress=on_progress,
            upload_seconds=spooled.upload_seconds,
        )

    @staticmethod
    async def _emit(on_progress: Optional[ProgressCallback], progress: IngestionProgress) -> None:
        if on_progress is None:
            return
        outcome = on_progress(progress)
        if inspect.isawaitable(outcome):
            await outcome

    async def _record_partial(self, backend, file_id: int, persisted: int) -> None:
        """Best effort: leave row_count pointing at the rows that made it to storage."""
        try:
            await backend.update_row_count(file_id, persisted)
        except StorageError as e:
            logger.warning(f"{self._log_prefix(file_id)} | Could not record partial row count: {e}")

    def _log_performance_report(self, file_record: FileRecord, result: IngestionResult) -> None:
        metrics = result.metrics
        total = metrics.total_seconds or 1e-9
        logger.info(
            "\n".join([
                f"{self._log_prefix(result.file_id, file_record.user_id)} | Performance report for {file_record.original_name}",
                f"  backend:      {result.backend.value}",
                f"  size:         {size_bytes_to_mb(metrics.size_bytes):.2f} MB",
                f"  rows:         {result.row_count} ({result.skipped_records} skipped, {result.batches} batches)",
                f"  total time:   {metrics.total_seconds:.2f}s",
                f"  upload:       {metrics.upload_seconds:.2f}s ({metrics.upload_seconds / total * 100:.1f}%)",
                f"  parse+insert: {metrics.parse_seconds:.2f}s ({metrics.parse_seconds / total * 100:.1f}%)",
                f"  insert:       {metrics.insert_seconds:.2f}s",
                f"  upload speed: {metrics.upload_mb_per_second:.2f} MB/s",
                f"  insert speed: {metrics.insert_rows_per_second(result.row_count):.0f} rows/s",
            ])
        )
