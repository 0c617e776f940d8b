"""
API Error Handlers
Maps the domain exception taxonomy to HTTP responses
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from salescaller.domain.exceptions import (
    ConflictError,
    NotFoundError,
    ProviderError,
    SalesCallerError,
    ValidationError,
    WebhookAuthenticationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ProviderError: status.HTTP_502_BAD_GATEWAY,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    WebhookAuthenticationError: status.HTTP_403_FORBIDDEN,
}


def status_code_for(exc: SalesCallerError) -> int:
    for exc_type, code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def domain_error_handler(request: Request, exc: SalesCallerError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    elif code == status.HTTP_403_FORBIDDEN:
        logger.warning(f"Rejected webhook {request.url.path}: {exc}")

    content = {"detail": exc.message, "error": type(exc).__name__}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SalesCallerError, domain_error_handler)
