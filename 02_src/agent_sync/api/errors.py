"""Mapping of domain errors to HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import (
    AuthorizationError,
    InvalidStateTransition,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from ..logging_config import get_logger

logger = get_logger(__name__)

# Most specific first; lookup follows the exception's MRO anyway
STATUS_CODES: dict[type[Exception], int] = {
    NotFoundError: 404,
    ValidationError: 422,
    InvalidStateTransition: 409,
    AuthorizationError: 403,
    TransientStoreError: 503,
}


def register_error_handlers(app: FastAPI) -> None:
    """Install one handler per domain error class."""

    async def handle(request: Request, exc: Exception) -> JSONResponse:
        status_code = next(
            code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)
        )
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    for exc_class in STATUS_CODES:
        app.add_exception_handler(exc_class, handle)
