"""Authentication module for the usage guard.

Resolves callers to a Supabase user id or a salted hash of their IP.
"""

from usage_guard.infrastructure.auth.deps import get_caller_identity
from usage_guard.infrastructure.auth.identity import (
    CallerIdentity,
    client_ip,
    hash_ip,
    parse_bearer,
    resolve_identity,
)
from usage_guard.infrastructure.auth.jwt import verify_jwt_token

__all__ = [
    "CallerIdentity",
    "client_ip",
    "get_caller_identity",
    "hash_ip",
    "parse_bearer",
    "resolve_identity",
    "verify_jwt_token",
]
