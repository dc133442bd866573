"""Usage routes: quota status, unit reservation and live rehearsal minutes.

AI handlers call /api/ai/reserve before doing paid work; the web client polls
/api/ai/usage to render the usage meter.
"""

from typing import Union

from fastapi import APIRouter, Depends, Response

from usage_guard.api.dependencies import get_request_context, get_usage_guard
from usage_guard.api.models.requests import LiveMinutesRequest, ReserveRequest
from usage_guard.api.models.responses import (
    ErrorResponse,
    ReservationResponse,
    UsageStatusResponse,
)
from usage_guard.core.usage import RequestContext, ReservationResult, UsageGuard, UsageStatus
from usage_guard.infrastructure.auth import CallerIdentity, get_caller_identity
from usage_guard.infrastructure.rate_limit import enforce_rate_limit

router = APIRouter(tags=["Usage"])

# Usage meter polling, per caller per minute
USAGE_POLL_LIMIT = 120

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def apply_usage_headers(response: Response, usage: Union[ReservationResult, UsageStatus]) -> None:
    """Mirror the budget into X-AI-* headers for clients that only read headers."""
    response.headers["X-AI-Remaining"] = str(usage.remaining)
    response.headers["X-AI-Limit"] = str(usage.limit)
    response.headers["X-AI-Membership"] = usage.membership
    response.headers["X-AI-Burst-Remaining"] = str(usage.burst_remaining)
    response.headers["X-AI-Burst-Limit"] = str(usage.burst_limit)


@router.get(
    "/api/ai/usage",
    response_model=UsageStatusResponse,
    responses=_ERROR_RESPONSES,
)
async def usage_status(
    response: Response,
    identity: CallerIdentity = Depends(get_caller_identity),
    guard: UsageGuard = Depends(get_usage_guard),
):
    """Current daily and burst budgets for the caller. Never charges."""
    response.headers["Cache-Control"] = "no-store, max-age=0"
    await enforce_rate_limit(
        guard.rate_limiter, f"AI_USAGE:{identity.limiter_key}", USAGE_POLL_LIMIT
    )

    status = await guard.status(identity)
    apply_usage_headers(response, status)
    return UsageStatusResponse.from_status(status)


@router.post(
    "/api/ai/reserve",
    response_model=ReservationResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def reserve_units(
    body: ReserveRequest,
    response: Response,
    identity: CallerIdentity = Depends(get_caller_identity),
    context: RequestContext = Depends(get_request_context),
    guard: UsageGuard = Depends(get_usage_guard),
):
    """Reserve AI units for one request. Denials carry error_code and resetAt."""
    context.provider = body.provider
    context.model = body.model

    result = await guard.reserve(identity, body.units, tool=body.tool, context=context)
    apply_usage_headers(response, result)
    return ReservationResponse.from_result(result)


@router.post(
    "/api/live-minutes",
    response_model=ReservationResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def reserve_live_minutes(
    body: LiveMinutesRequest,
    response: Response,
    identity: CallerIdentity = Depends(get_caller_identity),
    context: RequestContext = Depends(get_request_context),
    guard: UsageGuard = Depends(get_usage_guard),
):
    """Charge live rehearsal minutes (rounded up) against the monthly allotment."""
    result = await guard.reserve_live_minutes(identity, body.minutes, context=context)
    apply_usage_headers(response, result)
    return ReservationResponse.from_result(result)
