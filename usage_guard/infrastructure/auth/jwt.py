"""JWT authentication for the usage guard.

Handles JWT token verification using Supabase JWT secret, with the Supabase
auth API as a fallback when no secret is configured.
"""

from typing import Optional

import jwt

from usage_guard.config import config
from usage_guard.core.logging import logger
from usage_guard.infrastructure.database.client import SupabaseClient


def verify_jwt_token(token: str) -> Optional[str]:
    """Resolve a bearer token to a user id.

    Args:
        token: JWT token string (without "Bearer " prefix)

    Returns:
        User ID (UUID string) from token payload, or None if the token is
        invalid, expired, or cannot be checked
    """
    jwt_secret = config.supabase_jwt_secret()

    if not jwt_secret:
        return _verify_with_auth_api(token)

    try:
        # Decode and verify token
        payload = jwt.decode(
            token, jwt_secret, algorithms=["HS256"], audience="authenticated"
        )
    except jwt.ExpiredSignatureError:
        logger.warning("jwt_token_expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("jwt_token_invalid", error=str(e))
        return None

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("jwt_token_invalid", error="missing sub claim")
        return None

    logger.debug("jwt_token_verified", user_id=user_id)
    return user_id


def _verify_with_auth_api(token: str) -> Optional[str]:
    """Ask Supabase auth who the token belongs to."""
    client = SupabaseClient()
    if not client.is_configured():
        logger.warning("jwt_verification_skipped", reason="no JWT secret or Supabase credentials")
        return None

    try:
        response = client.client.auth.get_user(token)
    except Exception as e:
        logger.warning("auth_get_user_failed", error=str(e))
        return None

    user = getattr(response, "user", None)
    user_id = getattr(user, "id", None)
    if not user_id:
        return None

    logger.debug("jwt_token_verified", user_id=user_id, via="auth_api")
    return str(user_id)
