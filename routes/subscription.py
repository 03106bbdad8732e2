from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from core.context import AppContext
from core.plans import is_premium_tier
from schemas.subscription import PurchaseRequest, SubscriptionActionResponse, SubscriptionStatusResponse

from .common import get_context

router = APIRouter()
logger = logging.getLogger("oxalate-app")


def _action_response(ctx: AppContext, ok: bool, success_message: str) -> SubscriptionActionResponse:
    error = ctx.resolver.last_error
    if ok:
        message = success_message
    elif error is not None:
        message = error.user_message
    else:
        message = "No active Premium subscription was found."
    return SubscriptionActionResponse(ok=ok, tier=ctx.resolver.get_tier().value, message=message)


@router.get("/v1/subscription/status", response_model=SubscriptionStatusResponse)
async def subscription_status(ctx: AppContext = Depends(get_context)):
    tier = ctx.resolver.get_tier()
    status = ctx.resolver.subscription_status()
    return SubscriptionStatusResponse(
        tier=tier.value,
        is_premium=is_premium_tier(tier),
        is_active=status.is_active,
        will_renew=status.will_renew,
        product_identifier=status.product_identifier,
        expiration_date=status.expiration_date,
        demo_mode=ctx.settings.demo_mode,
    )


@router.post("/v1/subscription/purchase", response_model=SubscriptionActionResponse)
async def purchase(body: PurchaseRequest, ctx: AppContext = Depends(get_context)):
    ok = await ctx.resolver.purchase_product(body.product_id)
    logger.info("subscription_purchase", extra={"product_id": body.product_id, "ok": ok})
    return _action_response(ctx, ok, "Welcome to Premium! Enjoy unlimited access.")


@router.post("/v1/subscription/restore", response_model=SubscriptionActionResponse)
async def restore(ctx: AppContext = Depends(get_context)):
    ok = await ctx.resolver.restore_purchases()
    logger.info("subscription_restore", extra={"ok": ok})
    return _action_response(ctx, ok, "Your Premium subscription has been restored.")
