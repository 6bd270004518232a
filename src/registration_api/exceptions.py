import logging
from typing import Any, Optional

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base exception for errors reported to API clients"""

    def __init__(self, message: str, status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class MissingFieldsError(ServiceError):
    def __init__(self, message: str = "Full name and mobile number are required"):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class RegistrationFailedError(ServiceError):
    def __init__(self, details: Optional[str] = None):
        super().__init__("Registration failed", status.HTTP_500_INTERNAL_SERVER_ERROR, details)


class SchemaBootstrapError(RuntimeError):
    """Raised at startup when schema creation fails and bootstrap is strict."""


def _error_body(message: str, details: Optional[Any] = None) -> dict:
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return body


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.details))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(f"Rejected request body on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Invalid request body", jsonable_encoder(exc.errors())),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last line of defense: log with traceback and answer with a generic 500."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Something broke!", str(exc)),
    )


EXCEPTION_HANDLERS = {
    ServiceError: service_error_handler,
    RequestValidationError: validation_error_handler,
    Exception: unhandled_exception_handler,
}
