"""Rate-limited ping action and the usage read endpoints."""

from typing import Annotated, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from usagegate.app.api.dependencies import PingServiceDep
from usagegate.app.middleware.auth import SessionTokenDep

router = APIRouter(tags=["ping"])


class PingResponse(BaseModel):
    message: str
    caller: str
    score: int


class LeaderboardRow(BaseModel):
    username: str
    score: int


class TopResponse(BaseModel):
    top_users: list[LeaderboardRow]


class CountResponse(BaseModel):
    count: int


@router.get("/ping", response_model=PingResponse)
async def ping(token: SessionTokenDep, service: PingServiceDep) -> PingResponse:
    """Allow one call per cooldown window for the logged-in caller.

    Responds 401 without a valid session and 429 while cooling down.
    """
    result = await service.perform_rate_limited_action(token)
    return PingResponse(**result.to_dict())


@router.get("/top", response_model=TopResponse)
async def top(
    service: PingServiceDep,
    k: Annotated[Optional[int], Query(ge=1, le=1000)] = None,
) -> TopResponse:
    """Top callers of /ping (k defaults to the configured leaderboard size)."""
    entries = await service.get_leaderboard(k)
    return TopResponse(top_users=[LeaderboardRow(**entry.to_dict()) for entry in entries])


@router.get("/count", response_model=CountResponse)
async def count(service: PingServiceDep) -> CountResponse:
    """Approximate number of distinct callers of /ping."""
    return CountResponse(count=await service.get_distinct_caller_estimate())
