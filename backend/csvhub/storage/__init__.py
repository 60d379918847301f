"""
Hybrid storage engine: record store, streamed file store and the routing between them.

Backends live in their own modules (``record_store``, ``streamed_store``); open both
through ``csvhub.storage.context.open_storage``.
"""

from csvhub.storage.records import BackendKind, CSVRow, ExecuteResult, FileRecord, UserRecord
from csvhub.storage.selector import choose_backend, size_bytes_to_mb

__all__ = [
    "BackendKind",
    "CSVRow",
    "ExecuteResult",
    "FileRecord",
    "UserRecord",
    "choose_backend",
    "size_bytes_to_mb",
]
