"""Request models for the usage guard API."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from usage_guard.core.usage.guard import MAX_TOOL_NAME_LENGTH, MAX_UNITS_PER_CALL


class ReserveRequest(BaseModel):
    """Request for /api/ai/reserve."""

    units: int = Field(1, ge=0, le=MAX_UNITS_PER_CALL, description="Units to charge")
    tool: Optional[str] = Field(
        None,
        max_length=MAX_TOOL_NAME_LENGTH,
        description="Named tool (e.g. live_rehearsal) for tier gating and monthly quota",
    )
    provider: Optional[str] = Field(None, max_length=64, description="AI provider, for cost estimates")
    model: Optional[str] = Field(None, max_length=128, description="AI model, for cost estimates")

    @field_validator("tool")
    @classmethod
    def normalize_tool(cls, v: Optional[str]) -> Optional[str]:
        """Lowercase and strip tool names; blank means no tool."""
        if v is None:
            return None
        v = v.strip().lower()
        return v or None


class LiveMinutesRequest(BaseModel):
    """Request for /api/live-minutes."""

    minutes: float = Field(..., ge=0, le=MAX_UNITS_PER_CALL, description="Minutes of live rehearsal to charge")
