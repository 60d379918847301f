"""
Exception handlers mapping csvhub errors to HTTP responses.
"""

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from csvhub.exceptions import CSVHubError, StorageError
from csvhub.utils.logging import get_logger

logger = get_logger("api_errors")


async def csvhub_error_handler(request: Request, exc: CSVHubError) -> JSONResponse:
    """Every CSVHubError carries its own status code."""
    if isinstance(exc, StorageError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Validation failed", "errors": jsonable_encoder(exc.errors())},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CSVHubError, csvhub_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
