from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from core.context import AppContext
from schemas.usage import UsageActionResponse, UsageStatusResponse

from .common import get_context

router = APIRouter()
logger = logging.getLogger("oxalate-app")


@router.get("/v1/usage/status", response_model=UsageStatusResponse)
async def usage_status(ctx: AppContext = Depends(get_context)):
    return ctx.usage.usage_summary()


@router.post("/v1/usage/recipes/increment", response_model=UsageActionResponse)
async def increment_recipes(ctx: AppContext = Depends(get_context)):
    allowed = ctx.usage.increment_recipe_count()
    await ctx.usage.flush()
    if not allowed:
        logger.info("usage_gate_denied", extra={"quota": "recipes"})
    return UsageActionResponse(allowed=allowed, remaining=ctx.usage.get_remaining_recipes())


@router.post("/v1/usage/tracking/start", response_model=UsageActionResponse)
async def start_tracking(ctx: AppContext = Depends(get_context)):
    allowed = ctx.usage.start_tracking()
    await ctx.usage.flush()
    return UsageActionResponse(
        allowed=allowed and ctx.usage.can_track(),
        remaining=ctx.usage.get_remaining_tracking_days(),
    )


@router.post("/v1/usage/tracking/increment", response_model=UsageActionResponse)
async def increment_tracking(ctx: AppContext = Depends(get_context)):
    allowed = ctx.usage.increment_tracking_day()
    await ctx.usage.flush()
    if not allowed:
        logger.info("usage_gate_denied", extra={"quota": "tracking"})
    return UsageActionResponse(allowed=allowed, remaining=ctx.usage.get_remaining_tracking_days())


@router.post("/v1/usage/oracle/increment", response_model=UsageActionResponse)
async def increment_oracle(ctx: AppContext = Depends(get_context)):
    allowed = ctx.usage.increment_oracle_questions()
    await ctx.usage.flush()
    if not allowed:
        logger.info("usage_gate_denied", extra={"quota": "oracle_questions"})
    return UsageActionResponse(allowed=allowed, remaining=ctx.usage.get_remaining_oracle_questions())
