from __future__ import annotations

from fastapi import APIRouter, Depends

from core.context import AppContext

from .common import get_context

router = APIRouter()


@router.get("/")
async def root(ctx: AppContext = Depends(get_context)):
    """Root endpoint for uptime probes."""
    return {
        "ok": True,
        "service": "oxalate-oracle",
        "version": "1.0.0",
        "env": {"demo_mode": ctx.settings.demo_mode, "log_level": ctx.settings.log_level},
    }


@router.get("/health")
async def health_check():
    return {"ok": True}
