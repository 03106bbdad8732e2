from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ProviderModel(BaseModel):
    """Snapshots arrive camelCase from the store SDK; accept either spelling."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EntitlementInfo(_ProviderModel):
    identifier: str
    is_active: bool = Field(default=True, alias="isActive")
    will_renew: bool = Field(default=False, alias="willRenew")
    product_identifier: Optional[str] = Field(default=None, alias="productIdentifier")
    original_purchase_date: Optional[datetime] = Field(default=None, alias="originalPurchaseDate")
    expiration_date: Optional[datetime] = Field(default=None, alias="expirationDate")
    store: Optional[str] = None
    is_sandbox: bool = Field(default=False, alias="isSandbox")


class Entitlements(_ProviderModel):
    active: Dict[str, EntitlementInfo] = Field(default_factory=dict)
    all: Dict[str, EntitlementInfo] = Field(default_factory=dict)


class CustomerInfo(_ProviderModel):
    entitlements: Entitlements = Field(default_factory=Entitlements)
    all_purchased_product_identifiers: List[str] = Field(
        default_factory=list, alias="allPurchasedProductIdentifiers"
    )
    latest_expiration_date: Optional[datetime] = Field(default=None, alias="latestExpirationDate")
    original_app_user_id: Optional[str] = Field(default=None, alias="originalAppUserId")
    management_url: Optional[str] = Field(default=None, alias="managementURL")

    def active_entitlement(self, entitlement_id: str) -> Optional[EntitlementInfo]:
        entitlement = self.entitlements.active.get(entitlement_id)
        if entitlement is None or not entitlement.is_active:
            return None
        return entitlement


class StoreProduct(_ProviderModel):
    identifier: str
    title: str = ""
    description: str = ""
    price: float = 0.0
    price_string: str = Field(default="", alias="priceString")
    currency_code: str = Field(default="USD", alias="currencyCode")


class Package(_ProviderModel):
    identifier: str
    package_type: str = Field(default="CUSTOM", alias="packageType")
    product: StoreProduct
    offering_identifier: Optional[str] = Field(default=None, alias="offeringIdentifier")


class Offering(_ProviderModel):
    identifier: str
    server_description: str = Field(default="", alias="serverDescription")
    available_packages: List[Package] = Field(default_factory=list, alias="availablePackages")


class Offerings(_ProviderModel):
    current: Optional[Offering] = None
    all: Dict[str, Offering] = Field(default_factory=dict)


class PurchaseResult(_ProviderModel):
    customer_info: CustomerInfo = Field(alias="customerInfo")
    product_identifier: str = Field(alias="productIdentifier")
    transaction_identifier: Optional[str] = Field(default=None, alias="transactionIdentifier")


class PurchaseRequest(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=200)


class SubscriptionStatusResponse(BaseModel):
    tier: str
    is_premium: bool
    is_active: bool
    will_renew: bool
    product_identifier: Optional[str] = None
    expiration_date: Optional[datetime] = None
    demo_mode: bool = False


class SubscriptionActionResponse(BaseModel):
    ok: bool
    tier: str
    message: Optional[str] = None
