"""Mapping of catalog errors to HTTP responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    CatalogError,
    FeedDownloadError,
    FeedParseError,
    ImportNotFoundError,
    ImportValidationError,
    OfferNotFoundError,
    ProductNotFoundError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ImportValidationError: 400,
    FeedParseError: 400,
    ProductNotFoundError: 404,
    OfferNotFoundError: 404,
    ImportNotFoundError: 404,
    FeedDownloadError: 502,
}


def status_for(exc: CatalogError) -> int:
    """HTTP status of an error; storage / merge / index failures are 500."""
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_type": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CatalogError, catalog_error_handler)
