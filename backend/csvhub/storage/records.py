"""
Plain records shared by both storage backends.
"""

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from csvhub.exceptions import ParseError


class BackendKind(str, enum.Enum):
    """Which backend holds a file."""
    RECORD_STORE = "record_store"
    STREAMED_STORE = "streamed_store"


def encode_fields(fields: List[str]) -> str:
    """Encode a row's fields as a JSON array string (length-preserving)."""
    return json.dumps(fields, ensure_ascii=False)


def decode_fields(row_data: str) -> List[str]:
    """Decode a JSON array string back into the row's fields."""
    try:
        values = json.loads(row_data)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Row data is not a JSON array: {e}", snippet=str(row_data)) from e
    if not isinstance(values, list):
        raise ParseError("Row data is not a JSON array", snippet=str(row_data))
    return ["" if value is None else str(value) for value in values]


@dataclass
class CSVRow:
    """One parsed CSV record. Row 0 is the header."""
    file_id: int
    row_number: int
    fields: List[str]
    is_header: bool = False

    def to_log_dict(self) -> Dict[str, Any]:
        """Line format of the streamed store and column layout of ``csv_data``."""
        return {
            "file_id": self.file_id,
            "row_number": self.row_number,
            "row_data": encode_fields(self.fields),
            "is_header": 1 if self.is_header else 0,
        }

    @classmethod
    def from_log_dict(cls, data: Dict[str, Any]) -> "CSVRow":
        """Build a row from a log line or a ``csv_data`` mapping."""
        try:
            return cls(
                file_id=int(data["file_id"]),
                row_number=int(data["row_number"]),
                fields=decode_fields(data["row_data"]),
                is_header=bool(data.get("is_header", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Incomplete row record: {e}", snippet=str(data)) from e

    def as_mapping(self, headers: List[str]) -> Dict[str, Any]:
        """Zip the row with the header names; missing values become ''."""
        data: Dict[str, Any] = {"_rowNumber": self.row_number}
        for index, header in enumerate(headers):
            data[header] = self.fields[index] if index < len(self.fields) else ""
        return data


@dataclass
class FileRecord:
    """Metadata for an uploaded CSV file."""
    id: int
    user_id: int
    stored_filename: str
    original_name: str
    row_count: int = 0
    upload_date: datetime = field(default_factory=datetime.utcnow)
    backend: BackendKind = BackendKind.RECORD_STORE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "filename": self.stored_filename,
            "original_name": self.original_name,
            "row_count": self.row_count,
            "upload_date": self.upload_date.isoformat(),
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Shape returned by the file list endpoint."""
        return {
            "id": self.id,
            "original_name": self.original_name,
            "upload_date": self.upload_date.isoformat(),
            "row_count": self.row_count,
            "backend": self.backend.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], backend: BackendKind) -> "FileRecord":
        upload_date = data.get("upload_date")
        if isinstance(upload_date, str):
            upload_date = datetime.fromisoformat(upload_date)
        return cls(
            id=int(data["id"]),
            user_id=int(data["user_id"]),
            stored_filename=data["filename"],
            original_name=data["original_name"],
            row_count=int(data.get("row_count") or 0),
            upload_date=upload_date or datetime.utcnow(),
            backend=backend,
        )


@dataclass
class UserRecord:
    """Identity record. Only the record store holds password hashes."""
    id: int
    username: str
    password_hash: str
    is_admin: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "is_admin": self.is_admin,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ExecuteResult:
    """Outcome of a mutating record store statement."""
    rows_affected: int = 0
    inserted_id: Optional[int] = None
