"""Entitlement resolver: derives the subscription tier from store snapshots.

Every provider failure is converted to a safe default at this boundary: the
tier falls back to ``free`` and purchase/restore report ``False``. Nothing here
raises to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Protocol

from core.plans import ENTITLEMENT_ID, SubscriptionTier
from schemas.subscription import CustomerInfo, Offerings, PurchaseResult
from services.subscription_errors import RetryConfig, SubscriptionError, map_purchase_error, with_retry

logger = logging.getLogger("oxalate-app")


class EntitlementProvider(Protocol):
    async def get_customer_info(self) -> Any: ...

    async def get_offerings(self) -> Any: ...

    async def purchase_product(self, product_id: str) -> Any: ...

    async def restore_purchases(self) -> Any: ...


def to_customer_info(raw: Any) -> CustomerInfo:
    if isinstance(raw, CustomerInfo):
        return raw
    return CustomerInfo.model_validate(raw)


def is_premium_customer(info: Optional[CustomerInfo]) -> bool:
    if info is None:
        return False
    return info.active_entitlement(ENTITLEMENT_ID) is not None


@dataclass(frozen=True)
class SubscriptionStatus:
    is_premium: bool
    is_active: bool
    will_renew: bool
    product_identifier: Optional[str] = None
    original_purchase_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None


def get_subscription_status(info: Optional[CustomerInfo]) -> SubscriptionStatus:
    entitlement = info.active_entitlement(ENTITLEMENT_ID) if info is not None else None
    if entitlement is None:
        return SubscriptionStatus(is_premium=False, is_active=False, will_renew=False)
    return SubscriptionStatus(
        is_premium=True,
        is_active=entitlement.is_active,
        will_renew=entitlement.will_renew,
        product_identifier=entitlement.product_identifier,
        original_purchase_date=entitlement.original_purchase_date,
        expiration_date=entitlement.expiration_date,
    )


class EntitlementResolver:
    def __init__(
        self,
        provider: Optional[EntitlementProvider],
        *,
        retry: RetryConfig = RetryConfig(),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_resolved: Optional[Callable[[SubscriptionTier], None]] = None,
    ):
        self._provider = provider
        self._retry = retry
        self._sleep = sleep
        self._on_resolved = on_resolved
        self.tier = SubscriptionTier.LOADING
        self.customer_info: Optional[CustomerInfo] = None
        self.offerings: Optional[Offerings] = None
        self.last_error: Optional[SubscriptionError] = None

    def get_tier(self) -> SubscriptionTier:
        return self.tier

    def subscription_status(self) -> SubscriptionStatus:
        return get_subscription_status(self.customer_info)

    async def initialize_purchases(self) -> SubscriptionTier:
        self.tier = SubscriptionTier.LOADING

        if self._provider is None:
            logger.warning("purchases_unavailable", extra={"fallback_tier": "free"})
            self.tier = SubscriptionTier.FREE
        else:
            try:
                raw_info = await with_retry(self._provider.get_customer_info, self._retry, sleep=self._sleep)
                raw_offerings = await self._provider.get_offerings()
                info = to_customer_info(raw_info)
                offerings = (
                    raw_offerings if isinstance(raw_offerings, Offerings) else Offerings.model_validate(raw_offerings)
                )
            except Exception as exc:
                self.last_error = map_purchase_error(exc)
                logger.exception("purchases_initialize_failed", extra={"code": self.last_error.code})
                self.tier = SubscriptionTier.FREE
            else:
                self.customer_info = info
                self.offerings = offerings
                self.tier = SubscriptionTier.PREMIUM if is_premium_customer(info) else SubscriptionTier.FREE

        if self._on_resolved is not None:
            self._on_resolved(self.tier)
        return self.tier

    async def purchase_product(self, product_id: str) -> bool:
        if self._provider is None:
            logger.warning("purchases_unavailable", extra={"operation": "purchase"})
            return False

        try:
            raw = await self._provider.purchase_product(product_id)
            result = raw if isinstance(raw, PurchaseResult) else PurchaseResult.model_validate(raw)
        except Exception as exc:
            self._record_failure(exc, "purchase")
            return False

        self.last_error = None
        return self.update_customer_info(result.customer_info) is SubscriptionTier.PREMIUM

    async def restore_purchases(self) -> bool:
        if self._provider is None:
            logger.warning("purchases_unavailable", extra={"operation": "restore"})
            return False

        try:
            info = to_customer_info(await self._provider.restore_purchases())
        except Exception as exc:
            self._record_failure(exc, "restore")
            return False

        self.last_error = None
        self.customer_info = info
        if not is_premium_customer(info):
            logger.info("purchases_restore_no_entitlement")
            return False
        self.tier = SubscriptionTier.PREMIUM
        return True

    def update_customer_info(self, info: Any) -> SubscriptionTier:
        """Apply a customer-info snapshot pushed by the provider or returned by a purchase."""
        self.customer_info = to_customer_info(info)
        self.tier = SubscriptionTier.PREMIUM if is_premium_customer(self.customer_info) else SubscriptionTier.FREE
        return self.tier

    def _record_failure(self, exc: Exception, operation: str) -> None:
        self.last_error = map_purchase_error(exc)
        if self.last_error.code == "PURCHASE_CANCELLED_ERROR":
            logger.info("purchases_cancelled", extra={"operation": operation})
        else:
            logger.exception(
                "purchases_operation_failed",
                extra={"operation": operation, "code": self.last_error.code},
            )
