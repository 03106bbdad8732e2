"""Application context: owns every stateful component and wires their accessors.

Routes receive this object through ``app.state.context``; nothing in the
package keeps module-level mutable state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx

from core.cache import ResponseCache
from core.config import Settings
from core.entitlements import EntitlementProvider, EntitlementResolver
from core.limits import STORE_NAME, UsageLimitEngine, utc_clock
from core.storage import InMemoryKeyValueStorage, KeyValueStorage, PersistedStore
from services.demo_purchases import DemoEntitlementProvider
from services.oracle_chat import OracleChat
from services.oracle_client import OracleClient
from services.subscription_errors import RetryConfig

logger = logging.getLogger("oxalate-app")


@dataclass
class AppContext:
    settings: Settings
    storage: KeyValueStorage
    resolver: EntitlementResolver
    usage: UsageLimitEngine
    cache: ResponseCache
    oracle_client: OracleClient
    oracle_chat: OracleChat

    async def startup(self) -> None:
        await self.usage.restore()
        await self.resolver.initialize_purchases()
        await self.usage.flush()

    async def shutdown(self) -> None:
        await self.usage.flush()
        await self.oracle_client.aclose()


def build_context(
    settings: Settings,
    *,
    storage: Optional[KeyValueStorage] = None,
    provider: Optional[EntitlementProvider] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], datetime] = utc_clock,
    time_func: Callable[[], float] = time.time,
) -> AppContext:
    storage = storage or InMemoryKeyValueStorage()
    if provider is None:
        if settings.demo_mode:
            logger.warning("purchases_demo_mode")
            provider = DemoEntitlementProvider()
        else:
            logger.warning("purchases_provider_missing")

    usage: Optional[UsageLimitEngine] = None

    def _on_tier_resolved(_tier) -> None:
        if usage is not None:
            usage.reset_daily_limits()

    resolver = EntitlementResolver(
        provider,
        retry=RetryConfig(
            max_retries=settings.entitlement_max_retries,
            base_delay_s=settings.entitlement_base_delay_s,
            max_delay_s=settings.entitlement_max_delay_s,
        ),
        on_resolved=_on_tier_resolved,
    )
    usage = UsageLimitEngine(
        resolver.get_tier,
        store=PersistedStore(storage, STORE_NAME),
        clock=clock,
        oracle_daily_limit=settings.oracle_daily_limit,
        recipe_free_limit=settings.recipe_free_limit,
        tracking_free_days=settings.tracking_free_days,
    )
    cache = ResponseCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        time_func=time_func,
    )
    oracle_client = OracleClient(settings.oracle_url, timeout_s=settings.oracle_timeout_s, client=http_client)
    oracle_chat = OracleChat(oracle_client, cache, usage, time_func=time_func)

    return AppContext(
        settings=settings,
        storage=storage,
        resolver=resolver,
        usage=usage,
        cache=cache,
        oracle_client=oracle_client,
        oracle_chat=oracle_chat,
    )
