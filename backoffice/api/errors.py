"""
Domain error → JSON response mapping.

Every EntitlementError / SubscriptionError carries its own http_status and
to_dict() body, so routes raise domain errors and never build HTTP errors
for them by hand.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backoffice.entitlements.errors import EntitlementError, PersistenceError
from backoffice.subscriptions.errors import SubscriptionError

logger = logging.getLogger(__name__)


async def _domain_error_handler(request: Request, exc) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        logger.error("Request failed on storage", extra={
            "path": request.url.path,
            "operation": exc.operation,
        })
    else:
        logger.info("Request rejected", extra={
            "path": request.url.path,
            "error": exc.error_code,
        })
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path,
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EntitlementError, _domain_error_handler)
    app.add_exception_handler(SubscriptionError, _domain_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
