"""Entitlement-provider error mapping and retry policy."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger("oxalate-app")

T = TypeVar("T")


@dataclass(eq=False)
class SubscriptionError(Exception):
    code: str
    message: str
    is_retryable: bool
    user_message: str
    action_label: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0
    backoff_multiplier: float = 2.0


# code -> (retryable, user message, action label)
_ERROR_TABLE: dict[str, tuple[bool, str, Optional[str]]] = {
    "NETWORK_ERROR": (
        True,
        "Network connection issue. Please check your internet connection and try again.",
        "Retry",
    ),
    "OFFLINE_CONNECTION_ERROR": (
        True,
        "Network connection issue. Please check your internet connection and try again.",
        "Retry",
    ),
    "PURCHASE_CANCELLED_ERROR": (
        False,
        "Purchase was cancelled. You can try again whenever you're ready.",
        None,
    ),
    "STORE_PROBLEM_ERROR": (
        True,
        "The App Store is having issues. Please try again in a few moments.",
        "Retry",
    ),
    "PURCHASE_NOT_ALLOWED_ERROR": (
        False,
        "Purchases are not allowed on this device. Please check your device settings.",
        None,
    ),
    "PURCHASE_INVALID_ERROR": (
        False,
        "This purchase is not valid. Please contact support if the problem persists.",
        None,
    ),
    "PRODUCT_NOT_AVAILABLE_FOR_PURCHASE_ERROR": (
        True,
        "This product is temporarily unavailable. Please try again later.",
        "Retry",
    ),
    "PRODUCT_ALREADY_PURCHASED_ERROR": (
        False,
        "You already own this subscription. Try restoring your purchases instead.",
        "Restore Purchases",
    ),
    "RECEIPT_ALREADY_IN_USE_ERROR": (
        False,
        "This receipt is already in use by another account. Please contact support.",
        None,
    ),
    "INVALID_RECEIPT_ERROR": (
        True,
        "Receipt validation failed. Please try again or contact support if the issue persists.",
        "Retry",
    ),
    "MISSING_RECEIPT_FILE_ERROR": (
        True,
        "Receipt validation failed. Please try again or contact support if the issue persists.",
        "Retry",
    ),
    "CONFIGURATION_ERROR": (
        False,
        "App configuration issue. Please update the app or contact support.",
        None,
    ),
    "INVALID_CREDENTIALS_ERROR": (
        False,
        "App configuration issue. Please update the app or contact support.",
        None,
    ),
    "OPERATION_ALREADY_IN_PROGRESS_ERROR": (
        False,
        "Another purchase is in progress. Please wait for it to complete.",
        None,
    ),
    "UNEXPECTED_BACKEND_RESPONSE_ERROR": (
        True,
        "Server issue occurred. Please try again in a moment.",
        "Retry",
    ),
}

_UNKNOWN = (
    True,
    "Something went wrong. Please try again or contact support if the problem persists.",
    "Retry",
)


def map_purchase_error(error: Any) -> SubscriptionError:
    """Translate a provider exception (anything with ``code``/``message``) to a SubscriptionError."""
    if isinstance(error, SubscriptionError):
        return error

    code = getattr(error, "code", None) or "UNKNOWN_ERROR"
    message = getattr(error, "message", None) or str(error) or "An unknown error occurred"
    if code not in _ERROR_TABLE:
        code = "UNKNOWN_ERROR"
    retryable, user_message, action_label = _ERROR_TABLE.get(code, _UNKNOWN)
    return SubscriptionError(
        code=code,
        message=message,
        is_retryable=retryable,
        user_message=user_message,
        action_label=action_label,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = RetryConfig(),
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` retrying retryable provider errors with capped exponential backoff.

    Raises the mapped SubscriptionError once retries are exhausted or the
    error is not retryable.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            mapped = map_purchase_error(exc)
            if not mapped.is_retryable or attempt >= config.max_retries:
                if mapped is exc:
                    raise
                raise mapped from exc

            delay = min(config.base_delay_s * (config.backoff_multiplier ** attempt), config.max_delay_s)
            logger.warning(
                "subscription_operation_retry",
                extra={"attempt": attempt + 1, "max_retries": config.max_retries, "code": mapped.code},
            )
            await sleep(delay)
            attempt += 1
