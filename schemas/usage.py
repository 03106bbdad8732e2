from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class QuotaStatus(BaseModel):
    allowed: bool
    remaining: int
    used: int
    limit: int


class TrackingStatus(QuotaStatus):
    start_date: Optional[str] = None


class UsageStatusResponse(BaseModel):
    tier: str
    oracle_questions: QuotaStatus
    recipes: QuotaStatus
    tracking: TrackingStatus


class UsageActionResponse(BaseModel):
    """Result of reporting a usage event; ``allowed`` is False when the gate denied it."""

    allowed: bool
    remaining: int
