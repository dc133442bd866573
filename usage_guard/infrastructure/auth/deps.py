"""FastAPI authentication dependencies for the usage guard."""

from typing import Optional

from fastapi import Header, Request

from usage_guard.infrastructure.auth.identity import CallerIdentity, client_ip, resolve_identity


async def get_caller_identity(
    request: Request, authorization: Optional[str] = Header(None)
) -> CallerIdentity:
    """Resolve the caller for this request (user or hashed IP).

    Never rejects: invalid credentials are treated as anonymous.
    """
    cached = getattr(request.state, "caller_identity", None)
    if cached is not None:
        return cached

    fallback = request.client.host if request.client else None
    identity = await resolve_identity(authorization, client_ip(request.headers, fallback))
    request.state.caller_identity = identity
    return identity

