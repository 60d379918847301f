"""
Exception hierarchy for csvhub.

Every failure surfaced by the storage engine and the services is one of these classes;
the API layer maps them to HTTP status codes in ``csvhub.api.errors``.
"""

from typing import Any, Dict, Optional


class CSVHubError(Exception):
    """Base exception for all csvhub errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API error responses."""
        payload: Dict[str, Any] = {"message": self.message, "error": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CSVHubError):
    """Invalid input: empty upload, missing field, bad parameter."""

    status_code = 400


class NotFoundError(CSVHubError):
    """File, row or user is absent (or owned by somebody else)."""

    status_code = 404

    def __init__(self, message: str, resource: Optional[str] = None, resource_id: Any = None):
        details = {}
        if resource:
            details["resource"] = resource
        if resource_id is not None:
            details["id"] = resource_id
        super().__init__(message, details)
        self.resource = resource
        self.resource_id = resource_id


class ParseError(CSVHubError):
    """Malformed CSV record or corrupt log line. Recovered locally by skipping it."""

    status_code = 400

    def __init__(self, message: str, line_number: Optional[int] = None, snippet: Optional[str] = None):
        details: Dict[str, Any] = {}
        if line_number is not None:
            details["line_number"] = line_number
        if snippet:
            details["snippet"] = snippet[:100]
        super().__init__(message, details)
        self.line_number = line_number
        self.snippet = snippet


class StorageError(CSVHubError):
    """Disk write failure, engine not initialized, or any backend failure."""

    status_code = 500


class IngestionError(StorageError):
    """Ingestion aborted by a storage failure. Already flushed rows stay in place."""

    def __init__(self, message: str, file_id: Optional[int] = None, rows_persisted: int = 0):
        super().__init__(message, {"file_id": file_id, "rows_persisted": rows_persisted})
        self.file_id = file_id
        self.rows_persisted = rows_persisted


class AuthenticationError(CSVHubError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class PermissionDeniedError(CSVHubError):
    """Authenticated, but not allowed to act on the resource."""

    status_code = 403


class ConflictError(CSVHubError):
    """Uniqueness violation, e.g. duplicate username."""

    status_code = 409


class ConfigurationError(CSVHubError):
    """Invalid or missing configuration."""

    status_code = 500
