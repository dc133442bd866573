"""Exception handlers mapping failures onto the usage error contract.

Nothing escapes a route as a bare 500: guard denials keep their status,
validation failures become INVALID_REQUEST, and anything else SERVER_ERROR.
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from usage_guard.core.clock import utcnow
from usage_guard.core.errors import UsageError
from usage_guard.core.logging import logger


def usage_error_response(error: UsageError) -> JSONResponse:
    """Render a UsageError, with Retry-After on 429s."""
    headers = {}
    if error.status_code == 429:
        retry_after = error.retry_after_seconds(utcnow())
        headers["Retry-After"] = str(retry_after or 60)

    return JSONResponse(
        status_code=error.status_code,
        content=jsonable_encoder(error.to_payload()),
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the usage error handlers to an app."""

    @app.exception_handler(UsageError)
    async def handle_usage_error(request: Request, exc: UsageError):
        logger.info(
            "usage_request_denied",
            path=request.url.path,
            error_code=exc.code.value,
            status=exc.status_code,
        )
        return usage_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        error = UsageError.invalid_request(
            "Invalid request parameters.", errors=jsonable_encoder(exc.errors())
        )
        return usage_error_response(error)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("unhandled_request_error", path=request.url.path)
        return usage_error_response(UsageError.unexpected(exc))
