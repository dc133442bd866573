"""Request ID middleware for the usage guard."""

import uuid

import structlog
from fastapi import Request


async def request_id_middleware(request: Request, call_next):
    """Add unique request ID to each request, the log context and response headers."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    with structlog.contextvars.bound_contextvars(request_id=request_id):
        response = await call_next(request)

    response.headers["X-Request-ID"] = request_id
    return response
