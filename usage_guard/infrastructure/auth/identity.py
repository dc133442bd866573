"""Caller identity resolution.

Every request is attributed either to an authenticated user or to a salted
hash of the client IP. Resolution never fails: a missing, sentinel or invalid
credential degrades to the anonymous identity.
"""

import asyncio
import hashlib
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from usage_guard.config import config
from usage_guard.core.logging import logger
from usage_guard.infrastructure.auth.jwt import verify_jwt_token

GUEST_TOKEN = "guest"

USER = "user"
ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class CallerIdentity:
    """Who a request is charged to."""

    kind: str
    key: str
    ip_hash: Optional[str] = None

    @classmethod
    def user(cls, user_id: str, ip_hash: Optional[str] = None) -> "CallerIdentity":
        return cls(USER, user_id, ip_hash)

    @classmethod
    def anonymous(cls, ip_hash: str) -> "CallerIdentity":
        return cls(ANONYMOUS, ip_hash, ip_hash)

    @property
    def is_user(self) -> bool:
        return self.kind == USER

    @property
    def user_id(self) -> Optional[str]:
        return self.key if self.is_user else None

    @property
    def actor_type(self) -> str:
        return "user" if self.is_user else "guest"

    @property
    def limiter_key(self) -> str:
        """Key used for in-process and shared counters."""
        return f"user:{self.key}" if self.is_user else f"ip:{self.key}"


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not isinstance(authorization, str):
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def client_ip(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """Best guess at the client IP behind proxies."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded and forwarded.strip():
        return forwarded.split(",")[0].strip()

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return fallback or "unknown"


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_ip(ip: str) -> str:
    """Salted hash of an IP; raw addresses are never stored."""
    return sha256_hex(f"{config.telemetry_salt()}:{ip}")


async def resolve_identity(
    authorization: Optional[str],
    ip: str,
    verifier: Callable[[str], Optional[str]] = verify_jwt_token,
) -> CallerIdentity:
    """Resolve the caller from the Authorization header and client IP.

    Args:
        authorization: Raw Authorization header value
        ip: Client IP address
        verifier: Token -> user id (None when invalid)

    Returns:
        A user identity when the token verifies, otherwise an anonymous one
    """
    ip_hash = hash_ip(ip)
    token = parse_bearer(authorization)

    if not token or token == GUEST_TOKEN:
        return CallerIdentity.anonymous(ip_hash)

    # verify_jwt_token may call the Supabase auth API over the network
    try:
        user_id = await asyncio.to_thread(verifier, token)
    except Exception as e:
        logger.warning("identity_resolution_failed", error=str(e))
        user_id = None

    if not user_id:
        return CallerIdentity.anonymous(ip_hash)

    return CallerIdentity.user(user_id, ip_hash)
