"""
User endpoints
==============

GET /api/v1/users/{user_id}/restriction -- active penalty, if any
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from carpool.api.dependencies import get_penalty_guard
from carpool.api.middleware import DEFAULT_RATE, limiter
from carpool.api.schemas import PenaltyResponse, RestrictionResponse
from carpool.domain.penalties import PenaltyGuard

router = APIRouter(prefix="/users", tags=["users"])


@router.get(
    "/{user_id}/restriction",
    response_model=RestrictionResponse,
    summary="Is the user currently restricted by a penalty",
)
@limiter.limit(DEFAULT_RATE)
async def get_restriction(
    request: Request,
    user_id: str,
    guard: PenaltyGuard = Depends(get_penalty_guard),
):
    penalty = await guard.active_penalty(user_id, datetime.now(timezone.utc))
    return RestrictionResponse(
        user_id=user_id,
        restricted=penalty is not None,
        penalty=PenaltyResponse.from_domain(penalty),
    )
