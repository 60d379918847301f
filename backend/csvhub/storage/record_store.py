"""
Record store: embedded SQLite backend for users and small CSV files.

Every mutating call runs in its own transaction and commits before returning,
so each write is durable on its own.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from csvhub.database.base import Base
from csvhub.database.models.csv_file import CSVFile
from csvhub.database.models.user import User
from csvhub.database.repositories.csv_data import CSVDataRepository
from csvhub.database.repositories.csv_file import CSVFileRepository
from csvhub.database.repositories.user import UserRepository
from csvhub.exceptions import ConflictError, StorageError
from csvhub.storage.records import BackendKind, CSVRow, ExecuteResult, FileRecord, UserRecord
from csvhub.utils.logging import get_logger

logger = get_logger("record_store")


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _to_user(model: User) -> UserRecord:
    return UserRecord(
        id=model.id,
        username=model.username,
        password_hash=model.password,
        is_admin=bool(model.is_admin),
        created_at=model.created_at,
    )


def _to_file(model: CSVFile) -> FileRecord:
    return FileRecord(
        id=model.id,
        user_id=model.user_id,
        stored_filename=model.filename,
        original_name=model.original_name,
        row_count=model.row_count or 0,
        upload_date=model.upload_date,
        backend=BackendKind.RECORD_STORE,
    )


class RecordStore:
    """Embedded relational backend (SQLite through SQLAlchemy asyncio + aiosqlite)."""

    kind = BackendKind.RECORD_STORE

    def __init__(self, database_path: Path):
        self.database_path = Path(database_path)
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    async def init(self) -> None:
        """Open (or create) the database file and make sure the schema exists."""
        if self._closed:
            raise StorageError("Record store was closed; construct a new one")
        if self._engine is not None:
            return

        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_async_engine(f"sqlite+aiosqlite:///{self.database_path}", future=True)
            event.listen(engine.sync_engine, "connect", _enable_foreign_keys)

            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (OSError, SQLAlchemyError) as e:
            logger.error(f"[RecordStore] | Failed to open {self.database_path}: {e}", exc_info=True)
            raise StorageError(f"Failed to open record store: {e}") from e

        self._engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        logger.info(f"[RecordStore] | Ready at {self.database_path}")

    def _require_ready(self) -> None:
        if self._engine is None:
            raise StorageError("Record store not initialized. Call init() first.")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Transaction scope: commit on success, roll back and translate errors on failure."""
        self._require_ready()
        async with self._sessionmaker() as db:
            try:
                yield db
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                if "UNIQUE" in str(e.orig).upper():
                    raise ConflictError("Unique constraint violated", {"reason": str(e.orig)}) from e
                raise StorageError(f"Integrity error: {e.orig}") from e
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"[RecordStore] | Database error: {e}", exc_info=True)
                raise StorageError(f"Record store failure: {e}") from e
            except BaseException:
                await db.rollback()
                raise

    # ------------------------------------------------------------------
    # Raw statement interface
    # ------------------------------------------------------------------

    async def execute(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> ExecuteResult:
        """Run a mutating statement and commit it."""
        async with self.session() as db:
            result = await db.execute(text(statement), dict(params or {}))
            return ExecuteResult(
                rows_affected=result.rowcount if result.rowcount is not None else 0,
                inserted_id=getattr(result, "lastrowid", None),
            )

    async def query_one(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        async with self.session() as db:
            result = await db.execute(text(statement), dict(params or {}))
            row = result.mappings().first()
            return dict(row) if row is not None else None

    async def query_all(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self.session() as db:
            result = await db.execute(text(statement), dict(params or {}))
            return [dict(row) for row in result.mappings().all()]

    async def save(self) -> None:
        """Nothing is buffered: every write committed already."""
        self._require_ready()

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.debug(f"[RecordStore] | Closed {self.database_path}")
        self._engine = None
        self._sessionmaker = None
        self._closed = True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, username: str, password_hash: str, is_admin: bool = False) -> UserRecord:
        try:
            async with self.session() as db:
                user = await UserRepository.create(db, username, password_hash, is_admin=is_admin)
                return _to_user(user)
        except ConflictError as e:
            raise ConflictError("Username already exists", {"username": username}) from e

    async def get_user_by_id(self, user_id: int) -> Optional[UserRecord]:
        async with self.session() as db:
            user = await UserRepository.get_by_id(db, user_id)
            return _to_user(user) if user else None

    async def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        async with self.session() as db:
            user = await UserRepository.get_by_username(db, username)
            return _to_user(user) if user else None

    async def list_users(self) -> List[UserRecord]:
        async with self.session() as db:
            return [_to_user(user) for user in await UserRepository.list_users(db)]

    async def update_user(self, user_id: int, **fields: Any) -> Optional[UserRecord]:
        """Update username / password_hash / is_admin."""
        if "password_hash" in fields:
            fields["password"] = fields.pop("password_hash")
        try:
            async with self.session() as db:
                user = await UserRepository.update(db, user_id, **fields)
                return _to_user(user) if user else None
        except ConflictError as e:
            raise ConflictError("Username already exists", {"username": fields.get("username")}) from e

    async def delete_user(self, user_id: int) -> bool:
        """Delete a user and cascade to the user's files and rows."""
        async with self.session() as db:
            removed_files = await CSVFileRepository.delete_for_user(db, user_id)
            deleted = await UserRepository.delete(db, user_id)
        if deleted:
            logger.info(f"[RecordStore] | [user={user_id}] | Deleted user and {removed_files} file(s)")
        return deleted

    async def count_user_files(self, user_id: int) -> int:
        async with self.session() as db:
            return await UserRepository.count_files(db, user_id)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def create_file(
        self,
        file_id: int,
        user_id: int,
        stored_filename: str,
        original_name: str,
        upload_date: Optional[datetime] = None,
    ) -> FileRecord:
        async with self.session() as db:
            csv_file = await CSVFileRepository.create(
                db, file_id, user_id, stored_filename, original_name, upload_date=upload_date
            )
            return _to_file(csv_file)

    async def get_file(self, file_id: int) -> Optional[FileRecord]:
        async with self.session() as db:
            csv_file = await CSVFileRepository.get_by_id(db, file_id)
            return _to_file(csv_file) if csv_file else None

    async def list_files_for_user(self, user_id: int) -> List[FileRecord]:
        async with self.session() as db:
            return [_to_file(f) for f in await CSVFileRepository.list_user_files(db, user_id)]

    async def update_row_count(self, file_id: int, row_count: int) -> bool:
        async with self.session() as db:
            return await CSVFileRepository.update_row_count(db, file_id, row_count)

    async def delete_file(self, file_id: int) -> bool:
        async with self.session() as db:
            return await CSVFileRepository.delete(db, file_id)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def append_rows(self, file_id: int, rows: Sequence[CSVRow]) -> int:
        """Insert a batch of rows in one committed transaction."""
        if not rows:
            return 0
        async with self.session() as db:
            return await CSVDataRepository.insert_rows(db, rows)

    async def flush(self, file_id: int) -> None:
        """Rows are committed on append; kept for parity with the streamed store."""
        self._require_ready()

    async def get_header(self, file_id: int) -> Optional[List[str]]:
        async with self.session() as db:
            row = await CSVDataRepository.get_header(db, file_id)
            return row.fields if row else None

    async def get_row(self, file_id: int, row_number: int) -> Optional[CSVRow]:
        async with self.session() as db:
            return await CSVDataRepository.get_row(db, file_id, row_number)

    async def count_data_rows(self, file_id: int, exact: bool = True) -> int:
        """Always exact: the count comes straight from the index."""
        async with self.session() as db:
            return await CSVDataRepository.count_data_rows(db, file_id)

    async def list_page(self, file_id: int, limit: int, offset: int) -> List[CSVRow]:
        async with self.session() as db:
            return await CSVDataRepository.list_page(db, file_id, limit, offset)

    async def iter_rows(self, file_id: int, batch_size: int = 5_000) -> AsyncIterator[CSVRow]:
        """Iterate all data rows in row-number order, one keyset batch per transaction."""
        last_row = 0
        while True:
            async with self.session() as db:
                batch = await CSVDataRepository.list_after(db, file_id, last_row, batch_size)
            if not batch:
                return
            for row in batch:
                yield row
            last_row = batch[-1].row_number
