"""
Pydantic models for CSV file endpoints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CSVFileSummary(BaseModel):
    """One entry of the file list."""

    id: int
    original_name: str
    upload_date: str
    row_count: int
    backend: str


class CSVFileListResponse(BaseModel):
    files: List[CSVFileSummary]


class UploadResponse(BaseModel):
    """Result of an upload, including the timing breakdown."""

    message: str
    file_id: int
    filename: str
    row_count: int
    backend: str
    skipped_records: int = 0
    performance: Dict[str, str] = Field(default_factory=dict)


class FileInfo(BaseModel):
    id: int
    name: str
    uploadDate: str
    totalRows: int
    backend: str


class Pagination(BaseModel):
    currentPage: int
    pageSize: int
    totalRows: int
    totalPages: int


class CSVPageResponse(BaseModel):
    """One page of rows. Every row carries ``_rowNumber`` plus one key per header."""

    file: FileInfo
    headers: List[str]
    data: List[Dict[str, Any]]
    pagination: Pagination


class CSVRowResponse(BaseModel):
    headers: List[str]
    data: Dict[str, Any]
    rowNumber: int


class BatchDeleteRequest(BaseModel):
    fileIds: List[int] = Field(default_factory=list, description="Ids of the files to delete")


class BatchDeleteResponse(BaseModel):
    message: str
    deletedCount: int


class MessageResponse(BaseModel):
    message: str
    details: Optional[Dict[str, Any]] = None
