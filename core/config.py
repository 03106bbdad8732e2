from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_ORACLE_URL = (
    "https://flowise.iconnectit.co.uk/api/v1/prediction/38829e38-c961-4d31-b9d6-6506be363952"
)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class Settings:
    oracle_url: str = DEFAULT_ORACLE_URL
    oracle_timeout_s: float = 20.0
    oracle_daily_limit: int = 5
    recipe_free_limit: int = 1
    tracking_free_days: int = 7
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 50
    entitlement_max_retries: int = 3
    entitlement_base_delay_s: float = 1.0
    entitlement_max_delay_s: float = 10.0
    purchases_api_key: Optional[str] = None
    log_level: str = "INFO"

    @property
    def demo_mode(self) -> bool:
        """True when no real store API key is configured."""
        return not self.purchases_api_key or self.purchases_api_key.startswith("YOUR_")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            oracle_url=os.getenv("ORACLE_API_URL", DEFAULT_ORACLE_URL),
            oracle_timeout_s=_env_float("ORACLE_TIMEOUT_S", 20.0),
            oracle_daily_limit=_env_int("ORACLE_DAILY_LIMIT", 5),
            recipe_free_limit=_env_int("RECIPE_FREE_LIMIT", 1),
            tracking_free_days=_env_int("TRACKING_FREE_DAYS", 7),
            cache_ttl_seconds=_env_int("ORACLE_CACHE_TTL_S", 300),
            cache_max_entries=_env_int("ORACLE_CACHE_MAX_ENTRIES", 50),
            entitlement_max_retries=_env_int("ENTITLEMENT_MAX_RETRIES", 3),
            entitlement_base_delay_s=_env_float("ENTITLEMENT_RETRY_BASE_DELAY_S", 1.0),
            entitlement_max_delay_s=_env_float("ENTITLEMENT_RETRY_MAX_DELAY_S", 10.0),
            purchases_api_key=os.getenv("PURCHASES_API_KEY") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
