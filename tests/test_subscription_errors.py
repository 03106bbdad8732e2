import asyncio

import pytest

from services.subscription_errors import RetryConfig, SubscriptionError, map_purchase_error, with_retry


class ProviderError(Exception):
    def __init__(self, code: str, message: str = "provider failure"):
        super().__init__(message)
        self.code = code
        self.message = message


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_map_known_codes():
    cancelled = map_purchase_error(ProviderError("PURCHASE_CANCELLED_ERROR"))
    assert cancelled.code == "PURCHASE_CANCELLED_ERROR"
    assert cancelled.is_retryable is False
    assert cancelled.action_label is None

    owned = map_purchase_error(ProviderError("PRODUCT_ALREADY_PURCHASED_ERROR"))
    assert owned.action_label == "Restore Purchases"

    network = map_purchase_error(ProviderError("NETWORK_ERROR"))
    assert network.is_retryable is True
    assert "internet connection" in network.user_message


def test_map_unknown_and_plain_exceptions():
    mapped = map_purchase_error(ProviderError("SOMETHING_NEW", "boom"))
    assert mapped.code == "UNKNOWN_ERROR"
    assert mapped.message == "boom"
    assert mapped.is_retryable is True

    plain = map_purchase_error(RuntimeError("socket closed"))
    assert plain.code == "UNKNOWN_ERROR"
    assert plain.message == "socket closed"


def test_map_passes_subscription_errors_through():
    err = map_purchase_error(ProviderError("STORE_PROBLEM_ERROR"))
    assert map_purchase_error(err) is err


def test_with_retry_backs_off_then_succeeds():
    calls = {"n": 0}
    sleep = RecordingSleep()

    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ProviderError("NETWORK_ERROR")
        return "ok"

    result = asyncio.run(with_retry(flaky, RetryConfig(max_retries=3, base_delay_s=1.0), sleep=sleep))

    assert result == "ok"
    assert calls["n"] == 3
    assert sleep.delays == [1.0, 2.0]


def test_with_retry_caps_delay_and_gives_up():
    sleep = RecordingSleep()

    async def always_down():
        raise ProviderError("STORE_PROBLEM_ERROR")

    config = RetryConfig(max_retries=4, base_delay_s=3.0, max_delay_s=10.0)
    with pytest.raises(SubscriptionError) as exc_info:
        asyncio.run(with_retry(always_down, config, sleep=sleep))

    assert exc_info.value.code == "STORE_PROBLEM_ERROR"
    assert sleep.delays == [3.0, 6.0, 10.0, 10.0]


def test_with_retry_does_not_retry_non_retryable():
    calls = {"n": 0}
    sleep = RecordingSleep()

    async def cancelled():
        calls["n"] += 1
        raise ProviderError("PURCHASE_CANCELLED_ERROR")

    with pytest.raises(SubscriptionError) as exc_info:
        asyncio.run(with_retry(cancelled, sleep=sleep))

    assert exc_info.value.code == "PURCHASE_CANCELLED_ERROR"
    assert isinstance(exc_info.value.__cause__, ProviderError)
    assert calls["n"] == 1
    assert sleep.delays == []
