"""FastAPI dependencies for the usage guard API.

Dependency injection functions for route handlers.
"""

import uuid

from fastapi import Request

from usage_guard.core.usage import RequestContext, UsageGuard


def get_usage_guard(request: Request) -> UsageGuard:
    """Get the UsageGuard stored on app state by create_app()."""
    return request.app.state.usage_guard


def get_request_context(request: Request) -> RequestContext:
    """Telemetry context for the current request."""
    return RequestContext(
        request_id=getattr(request.state, "request_id", None) or str(uuid.uuid4()),
        endpoint=request.url.path,
        user_agent=request.headers.get("user-agent"),
    )
