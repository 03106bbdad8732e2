from __future__ import annotations

from enum import Enum

# returned by every get_remaining_* call under premium
UNLIMITED = 999

ENTITLEMENT_ID = "premium"

PRODUCT_IDS = {
    "MONTHLY_PREMIUM": "oxalate_premium_monthly",
    "YEARLY_PREMIUM": "oxalate_premium_yearly",
}


class SubscriptionTier(str, Enum):
    LOADING = "loading"
    FREE = "free"
    PREMIUM = "premium"


def is_premium_tier(tier: SubscriptionTier) -> bool:
    """Only a resolved premium tier unlocks; ``loading`` gates like ``free``."""
    return tier is SubscriptionTier.PREMIUM
