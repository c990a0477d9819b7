import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from utils.exceptions import (NotFoundError, PayloadValidationError, PermissionDeniedError, SyncError,
                              TransientIOError, TranslationError)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 2

_STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (PayloadValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TranslationError, status.HTTP_502_BAD_GATEWAY),
    (TransientIOError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(error: SyncError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    code = status_for(exc)
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    if code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.debug("%s %s -> %d: %s", request.method, request.url.path, code, exc)
    return JSONResponse(status_code=code, content={"detail": exc.message}, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SyncError, sync_error_handler)
