"""Response models for the usage guard API.

Field names are camelCase on the wire to match the existing web client.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from usage_guard.core.usage import ReservationResult, UsageStatus


class ReservationResponse(BaseModel):
    """Budget left after a granted reservation."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    remaining: int
    limit: int
    burst_remaining: int = Field(..., alias="burstRemaining")
    burst_limit: int = Field(..., alias="burstLimit")
    membership: str
    reset_at: datetime = Field(..., alias="resetAt")
    tool_remaining: Optional[int] = Field(None, alias="toolRemaining")

    @classmethod
    def from_result(cls, result: ReservationResult) -> "ReservationResponse":
        return cls(
            remaining=result.remaining,
            limit=result.limit,
            burst_remaining=result.burst_remaining,
            burst_limit=result.burst_limit,
            membership=result.membership,
            reset_at=result.reset_at,
            tool_remaining=result.tool_remaining,
        )


class UsageStatusResponse(BaseModel):
    """Current budgets for the usage meter."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    membership: str
    used: int
    limit: int
    remaining: int
    burst_limit: int = Field(..., alias="burstLimit")
    burst_remaining: int = Field(..., alias="burstRemaining")
    reset_at: datetime = Field(..., alias="resetAt")

    @classmethod
    def from_status(cls, status: UsageStatus) -> "UsageStatusResponse":
        return cls(
            membership=status.membership,
            used=status.used,
            limit=status.limit,
            remaining=status.remaining,
            burst_limit=status.burst_limit,
            burst_remaining=status.burst_remaining,
            reset_at=status.reset_at,
        )


class ErrorResponse(BaseModel):
    """Typed denial returned with a 4xx/5xx status."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    error_code: str
    retryable: bool
    reset_at: Optional[datetime] = Field(None, alias="resetAt")
