"""Mapping of marketplace errors to HTTP responses."""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from database import DatabaseError
from errors import (
    ConflictError,
    DuplicateReviewError,
    InvalidStateError,
    MarketplaceError,
    NotAMemberError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError
)

logger = logging.getLogger(__name__)

# First match wins
STATUS_CODES = (
    (NotAMemberError, status.HTTP_403_FORBIDDEN),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (DuplicateReviewError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
)

def status_code_for(exc: Exception) -> int:
    for error_type, code in STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR

async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"Unhandled marketplace error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=code,
        content={'detail': str(exc), 'error': type(exc).__name__}
    )

async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    if isinstance(exc, ConflictError):
        return await marketplace_error_handler(request, exc)
    logger.error(f"Database error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={'detail': 'Database error', 'error': type(exc).__name__}
    )

def register_error_handlers(app) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
