import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from core.exceptions import StoreError, UpstreamServiceError

logger = logging.getLogger(__name__)


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StoreError):
        return await unhandled_exception_handler(request, exc)

    if isinstance(exc, UpstreamServiceError):
        logger.error("Upstream failure on %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "errors": exc.errors},
    )


async def stale_data_handler(request: Request, exc: Exception) -> JSONResponse:
    """A concurrent writer changed the row between our read and our update."""
    logger.warning("Concurrent modification on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": "The resource was modified by another request, please retry",
            "code": "conflict",
            "errors": [],
        },
    )


async def integrity_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Constraint violation on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": "The request conflicts with existing data, please retry",
            "code": "conflict",
            "errors": [],
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "code": "error", "errors": []},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(StaleDataError, stale_data_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
