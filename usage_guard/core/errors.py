"""Typed usage errors.

Every failure inside the guard resolves to one ``UsageError`` carrying an
``ErrorCode``, an HTTP status and a retry hint. Callers key their UI off
``error_code`` and may use ``resetAt`` for a countdown.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from usage_guard.config import config


class ErrorCode(str, Enum):
    """Error codes returned to callers."""

    RATE_LIMITED = "RATE_LIMITED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    TIER_RESTRICTED = "TIER_RESTRICTED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_REQUEST = "INVALID_REQUEST"
    SERVER_ERROR = "SERVER_ERROR"


class UsageError(Exception):
    """A guard decision that denies the request."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int,
        retryable: bool,
        reset_at: Optional[datetime] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        self.reset_at = reset_at
        self.details = details or {}

    def __repr__(self) -> str:
        return f"UsageError({self.code.value}, status={self.status_code})"

    def retry_after_seconds(self, now: datetime) -> Optional[int]:
        """Seconds until ``reset_at``, at least 1, or None when unknown."""
        if self.reset_at is None:
            return None
        return max(1, int((self.reset_at - now).total_seconds() + 0.999))

    def to_payload(self) -> Dict[str, Any]:
        """Render the error contract returned over HTTP."""
        payload: Dict[str, Any] = {
            "error": self.message,
            "error_code": self.code.value,
            "retryable": self.retryable,
        }
        if self.reset_at is not None:
            payload["resetAt"] = self.reset_at.isoformat()
        if self.details and not config.is_production():
            payload["details"] = self.details
        return payload

    # Constructors

    @classmethod
    def rate_limited(cls, reset_at: datetime, **details) -> "UsageError":
        return cls(
            ErrorCode.RATE_LIMITED,
            "Too many requests. Please wait a moment and try again.",
            status_code=429,
            retryable=True,
            reset_at=reset_at,
            details=details,
        )

    @classmethod
    def usage_limit_reached(
        cls, message: str, reset_at: datetime, status_code: int = 429, **details
    ) -> "UsageError":
        return cls(
            ErrorCode.USAGE_LIMIT_REACHED,
            message,
            status_code=status_code,
            retryable=True,
            reset_at=reset_at,
            details=details,
        )

    @classmethod
    def tier_restricted(cls, tool: str, min_tier: str, **details) -> "UsageError":
        return cls(
            ErrorCode.TIER_RESTRICTED,
            f"'{tool}' requires the {min_tier} plan or higher.",
            status_code=402,
            retryable=False,
            details=details,
        )

    @classmethod
    def not_configured(cls, missing: Optional[list] = None) -> "UsageError":
        return cls(
            ErrorCode.NOT_CONFIGURED,
            "Server usage tracking is not configured.",
            status_code=503,
            retryable=True,
            details={"missing": missing} if missing else None,
        )

    @classmethod
    def unauthorized(cls, message: str = "Unauthorized.") -> "UsageError":
        return cls(ErrorCode.UNAUTHORIZED, message, status_code=401, retryable=False)

    @classmethod
    def invalid_request(cls, message: str, **details) -> "UsageError":
        return cls(
            ErrorCode.INVALID_REQUEST,
            message,
            status_code=400,
            retryable=False,
            details=details,
        )

    @classmethod
    def storage_unavailable(cls, **details) -> "UsageError":
        return cls(
            ErrorCode.SERVER_ERROR,
            "Usage tracking unavailable. Try again shortly.",
            status_code=503,
            retryable=True,
            details=details,
        )

    @classmethod
    def unexpected(cls, error: Exception) -> "UsageError":
        return cls(
            ErrorCode.SERVER_ERROR,
            "An unexpected error occurred.",
            status_code=500,
            retryable=False,
            details={"type": type(error).__name__, "message": str(error)[:200]},
        )
