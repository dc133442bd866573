"""Request and response models for the usage guard API."""

from usage_guard.api.models.requests import LiveMinutesRequest, ReserveRequest
from usage_guard.api.models.responses import (
    ErrorResponse,
    ReservationResponse,
    UsageStatusResponse,
)

__all__ = [
    "ErrorResponse",
    "LiveMinutesRequest",
    "ReservationResponse",
    "ReserveRequest",
    "UsageStatusResponse",
]
