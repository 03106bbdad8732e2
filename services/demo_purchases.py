"""In-process entitlement provider for demo mode (no store API key configured)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from core.plans import ENTITLEMENT_ID, PRODUCT_IDS
from schemas.subscription import (
    CustomerInfo,
    EntitlementInfo,
    Entitlements,
    Offering,
    Offerings,
    Package,
    PurchaseResult,
    StoreProduct,
)

DEMO_USER_ID = "demo-user"

_DEMO_PRODUCTS = {
    PRODUCT_IDS["MONTHLY_PREMIUM"]: ("MONTHLY", "Premium Monthly", 4.99, 30),
    PRODUCT_IDS["YEARLY_PREMIUM"]: ("ANNUAL", "Premium Yearly", 39.99, 365),
}


class DemoPurchaseError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def create_mock_customer_info(
    is_premium: bool = False,
    *,
    product_id: str = PRODUCT_IDS["MONTHLY_PREMIUM"],
    now: Optional[datetime] = None,
) -> CustomerInfo:
    now = now or datetime.now(timezone.utc)
    if not is_premium:
        return CustomerInfo(original_app_user_id=DEMO_USER_ID)

    period_days = _DEMO_PRODUCTS.get(product_id, ("CUSTOM", "", 0.0, 30))[3]
    expires = now + timedelta(days=period_days)
    entitlement = EntitlementInfo(
        identifier=ENTITLEMENT_ID,
        is_active=True,
        will_renew=True,
        product_identifier=product_id,
        original_purchase_date=now,
        expiration_date=expires,
        store="PROMOTIONAL",
        is_sandbox=True,
    )
    return CustomerInfo(
        entitlements=Entitlements(active={ENTITLEMENT_ID: entitlement}, all={ENTITLEMENT_ID: entitlement}),
        all_purchased_product_identifiers=[product_id],
        latest_expiration_date=expires,
        original_app_user_id=DEMO_USER_ID,
    )


def create_mock_offerings() -> Offerings:
    packages = [
        Package(
            identifier=f"${package_type.lower()}",
            package_type=package_type,
            product=StoreProduct(
                identifier=product_id,
                title=title,
                price=price,
                price_string=f"${price:.2f}",
            ),
            offering_identifier="default",
        )
        for product_id, (package_type, title, price, _) in _DEMO_PRODUCTS.items()
    ]
    default = Offering(identifier="default", server_description="Oxalate Premium", available_packages=packages)
    return Offerings(current=default, all={"default": default})


class DemoEntitlementProvider:
    """Keeps the demo user's entitlement in memory; known products always succeed."""

    def __init__(self, premium: bool = False):
        self._customer_info = create_mock_customer_info(premium)
        self._purchased: Optional[str] = PRODUCT_IDS["MONTHLY_PREMIUM"] if premium else None

    async def get_customer_info(self) -> CustomerInfo:
        return self._customer_info

    async def get_offerings(self) -> Offerings:
        return create_mock_offerings()

    async def purchase_product(self, product_id: str) -> PurchaseResult:
        if product_id not in _DEMO_PRODUCTS:
            raise DemoPurchaseError(
                "PRODUCT_NOT_AVAILABLE_FOR_PURCHASE_ERROR", f"Unknown product: {product_id}"
            )
        self._purchased = product_id
        self._customer_info = create_mock_customer_info(True, product_id=product_id)
        return PurchaseResult(
            customer_info=self._customer_info,
            product_identifier=product_id,
            transaction_identifier=f"demo_{uuid4().hex[:12]}",
        )

    async def restore_purchases(self) -> CustomerInfo:
        if self._purchased is None:
            return create_mock_customer_info(False)
        return create_mock_customer_info(True, product_id=self._purchased)
