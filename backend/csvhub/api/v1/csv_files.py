"""
CSV file endpoints: upload, list, paged rows, single rows and deletes.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from csvhub.api.deps import get_current_user, get_ingestion_service, get_row_access_service
from csvhub.models.csv_file import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    CSVFileListResponse,
    CSVFileSummary,
    CSVPageResponse,
    CSVRowResponse,
    MessageResponse,
    UploadResponse,
)
from csvhub.services.ingestion_service import IngestionService
from csvhub.services.row_access_service import RowAccessService, RowFilter
from csvhub.storage.records import UserRecord
from csvhub.utils.logging import get_logger

logger = get_logger("csv_files_api")

router = APIRouter()


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_csv(
    file: UploadFile = File(..., description="CSV file to upload"),
    current_user: UserRecord = Depends(get_current_user),
    service: IngestionService = Depends(get_ingestion_service),
) -> UploadResponse:
    """
    Upload a CSV file.

    Files up to the size threshold go to the record store, larger ones to the streamed
    file store. The response carries the row count and a timing breakdown.
    """
    result = await service.upload_and_ingest(current_user.id, file, username=current_user.username)
    logger.info(f"Uploaded {file.filename} for user {current_user.id}: {result.row_count} rows")
    return UploadResponse(
        message="File uploaded successfully",
        file_id=result.file_id,
        filename=file.filename or "",
        row_count=result.row_count,
        backend=result.backend.value,
        skipped_records=result.skipped_records,
        performance=result.metrics.to_dict(result.row_count),
    )


@router.get("/list", response_model=CSVFileListResponse)
async def list_files(
    current_user: UserRecord = Depends(get_current_user),
    service: RowAccessService = Depends(get_row_access_service),
) -> CSVFileListResponse:
    """The caller's files from both stores, newest first."""
    files = await service.list_files_for_user(current_user.id)
    return CSVFileListResponse(files=[CSVFileSummary(**record.to_public_dict()) for record in files])


@router.post("/batch-delete", response_model=BatchDeleteResponse)
async def batch_delete(
    payload: BatchDeleteRequest,
    current_user: UserRecord = Depends(get_current_user),
    service: RowAccessService = Depends(get_row_access_service),
) -> BatchDeleteResponse:
    deleted = await service.batch_delete_files(payload.fileIds, user_id=current_user.id)
    return BatchDeleteResponse(message=f"Successfully deleted {deleted} file(s)", deletedCount=deleted)


@router.get("/{file_id}", response_model=CSVPageResponse)
async def get_file_page(
    file_id: int,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, alias="pageSize", ge=1),
    filter_column: Optional[str] = Query(None, alias="filterColumn"),
    filter_keyword: Optional[str] = Query(None, alias="filterKeyword"),
    filter_start_date: Optional[str] = Query(None, alias="filterStartDate"),
    filter_end_date: Optional[str] = Query(None, alias="filterEndDate"),
    current_user: UserRecord = Depends(get_current_user),
    service: RowAccessService = Depends(get_row_access_service),
) -> CSVPageResponse:
    """One page of rows, optionally filtered on a column before paging."""
    row_filter = RowFilter(
        column=filter_column,
        keyword=filter_keyword,
        date_from=filter_start_date,
        date_to=filter_end_date,
    )
    result = await service.get_page(
        file_id,
        page=page,
        page_size=page_size,
        row_filter=row_filter,
        user_id=current_user.id,
    )
    return CSVPageResponse(**result.to_dict())


@router.get("/{file_id}/row/{row_number}", response_model=CSVRowResponse)
async def get_file_row(
    file_id: int,
    row_number: int,
    current_user: UserRecord = Depends(get_current_user),
    service: RowAccessService = Depends(get_row_access_service),
) -> CSVRowResponse:
    return CSVRowResponse(**await service.get_row(file_id, row_number, user_id=current_user.id))


@router.delete("/{file_id}", response_model=MessageResponse)
async def delete_file(
    file_id: int,
    current_user: UserRecord = Depends(get_current_user),
    service: RowAccessService = Depends(get_row_access_service),
) -> MessageResponse:
    await service.delete_file(file_id, user_id=current_user.id)
    return MessageResponse(message="File deleted successfully")
