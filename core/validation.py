"""Usage-limit validation utilities.

Guards every quota mutation against malformed input before it reaches
persisted state. All date arithmetic uses UTC-derived strings so that local
timezones never shift a day boundary.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from numbers import Number
from typing import Any, Callable, Optional, TypeVar

from core.errors import ErrorCode, UsageLimitValidationError

logger = logging.getLogger("oxalate-app")

T = TypeVar("T")

DEFAULT_MAX_VALUE = 10_000
MAX_TRACKING_START_AGE_DAYS = 30

_DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
_MONTH_RE = re.compile(r"^[0-9]{4}-[0-9]{2}$")


def _utc_now(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _utc_midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def _check_integral(value: Any, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, Number):
        raise UsageLimitValidationError(
            ErrorCode.INVALID_TYPE, f"{field} must be a number", field, value
        )
    try:
        integral = value == int(value)
    except (TypeError, ValueError, OverflowError):
        integral = False
    if not integral:
        raise UsageLimitValidationError(
            ErrorCode.INVALID_INTEGER, f"{field} must be an integer", field, value
        )


def validate_count(value: Any, field: str, max_value: int = DEFAULT_MAX_VALUE) -> None:
    """Validate a non-negative integer count no larger than ``max_value``."""
    _check_integral(value, field)
    if value < 0:
        raise UsageLimitValidationError(
            ErrorCode.NEGATIVE_COUNT, f"{field} cannot be negative", field, value
        )
    if value > max_value:
        raise UsageLimitValidationError(
            ErrorCode.COUNT_TOO_HIGH, f"{field} cannot exceed {max_value}", field, value
        )


def validate_limit(value: Any, field: str, max_value: int = DEFAULT_MAX_VALUE) -> None:
    """Validate a strictly positive integer limit no larger than ``max_value``."""
    _check_integral(value, field)
    if value <= 0:
        raise UsageLimitValidationError(
            ErrorCode.INVALID_LIMIT, f"{field} must be positive", field, value
        )
    if value > max_value:
        raise UsageLimitValidationError(
            ErrorCode.LIMIT_TOO_HIGH, f"{field} cannot exceed {max_value}", field, value
        )


def parse_date_string(value: str) -> date:
    """Parse ``YYYY-MM-DD`` into a date. Raises ValueError on bad input."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def validate_date_string(value: Any, field: str, now: Optional[datetime] = None) -> None:
    """Validate an ISO ``YYYY-MM-DD`` date.

    Dates up to one day ahead are tolerated (timezone skew); dates more than
    365 days in the past are rejected.
    """
    if not isinstance(value, str):
        raise UsageLimitValidationError(
            ErrorCode.INVALID_TYPE, f"{field} must be a string", field, value
        )
    if not _DATE_RE.match(value):
        raise UsageLimitValidationError(
            ErrorCode.INVALID_DATE_FORMAT, f"{field} must be in YYYY-MM-DD format", field, value
        )
    try:
        parsed = _utc_midnight(parse_date_string(value))
    except ValueError:
        raise UsageLimitValidationError(
            ErrorCode.INVALID_DATE, f"{field} is not a valid date", field, value
        ) from None

    current = _utc_now(now)
    if parsed > current + timedelta(days=1):
        raise UsageLimitValidationError(
            ErrorCode.FUTURE_DATE, f"{field} cannot be in the future", field, value
        )
    if parsed < current - timedelta(days=365):
        raise UsageLimitValidationError(
            ErrorCode.DATE_TOO_OLD, f"{field} cannot be more than 1 year old", field, value
        )


def validate_month_string(value: Any, field: str, now: Optional[datetime] = None) -> None:
    """Validate an ISO ``YYYY-MM`` month between 2020 and 2100, not in the future."""
    if not isinstance(value, str):
        raise UsageLimitValidationError(
            ErrorCode.INVALID_TYPE, f"{field} must be a string", field, value
        )
    if not _MONTH_RE.match(value):
        raise UsageLimitValidationError(
            ErrorCode.INVALID_MONTH_FORMAT, f"{field} must be in YYYY-MM format", field, value
        )

    year, month = (int(part) for part in value.split("-"))
    if month < 1 or month > 12:
        raise UsageLimitValidationError(
            ErrorCode.INVALID_MONTH, f"{field} month must be between 01 and 12", field, value
        )
    if year < 2020 or year > 2100:
        raise UsageLimitValidationError(
            ErrorCode.INVALID_YEAR, f"{field} year must be between 2020 and 2100", field, value
        )
    # zero-padded strings compare chronologically
    if value > get_current_month_string(now):
        raise UsageLimitValidationError(
            ErrorCode.FUTURE_MONTH, f"{field} cannot be in the future", field, value
        )


def safe_increment_count(current: Any, field: str, max_value: int = DEFAULT_MAX_VALUE) -> int:
    validate_count(current, f"current {field}", max_value)
    incremented = int(current) + 1
    validate_count(incremented, f"incremented {field}", max_value)
    return incremented


def safe_decrement_count(current: Any, field: str, min_value: int = 0) -> int:
    validate_count(current, f"current {field}")
    if current <= min_value:
        raise UsageLimitValidationError(
            ErrorCode.CANNOT_DECREMENT,
            f"Cannot decrement {field} below {min_value}",
            field,
            current,
        )
    return int(current) - 1


def safe_reset_count(field: str) -> int:
    logger.debug("usage_count_reset", extra={"field": field})
    return 0


def get_current_date_string(now: Optional[datetime] = None) -> str:
    return _utc_now(now).strftime("%Y-%m-%d")


def get_current_month_string(now: Optional[datetime] = None) -> str:
    return _utc_now(now).strftime("%Y-%m")


def is_today(value: Any, now: Optional[datetime] = None) -> bool:
    try:
        validate_date_string(value, "date_string", now=now)
    except UsageLimitValidationError:
        return False
    return value == get_current_date_string(now)


def is_current_month(value: Any, now: Optional[datetime] = None) -> bool:
    try:
        validate_month_string(value, "month_string", now=now)
    except UsageLimitValidationError:
        return False
    return value == get_current_month_string(now)


def get_days_difference(start_date: Any, now: Optional[datetime] = None) -> int:
    """Days from ``start_date`` to today (UTC), counting the start day.

    The same day yields 1. Returns -1 instead of raising when the start date is
    missing or invalid.
    """
    try:
        validate_date_string(start_date, "start_date", now=now)
    except UsageLimitValidationError:
        return -1

    start = _utc_midnight(parse_date_string(start_date))
    today = _utc_midnight(_utc_now(now).date())
    return (today - start).days + 1


def validate_tracking_start_date(start_date: Any, now: Optional[datetime] = None) -> None:
    if start_date is None:
        return  # trial not started

    validate_date_string(start_date, "tracking.startDate", now=now)

    elapsed = get_days_difference(start_date, now=now)
    if elapsed > MAX_TRACKING_START_AGE_DAYS:
        raise UsageLimitValidationError(
            ErrorCode.START_DATE_TOO_OLD,
            f"Tracking start date cannot be more than {MAX_TRACKING_START_AGE_DAYS} days ago",
            "tracking.startDate",
            start_date,
        )
    if elapsed < 1:
        raise UsageLimitValidationError(
            ErrorCode.INVALID_START_DATE,
            "Tracking start date is invalid",
            "tracking.startDate",
            start_date,
        )


def atomic_usage_limit_update(operation: Callable[[], T], label: str) -> T:
    """Run ``operation`` and pass its result through.

    Errors are logged and re-raised, so a state commit placed after the call
    never runs when validation inside ``operation`` fails.
    """
    try:
        result = operation()
    except Exception:
        logger.error("usage_limit_update_failed", extra={"operation": label}, exc_info=True)
        raise
    logger.debug("usage_limit_update_completed", extra={"operation": label})
    return result


def _require_section(record: Mapping, name: str) -> Mapping:
    section = record.get(name)
    if not isinstance(section, Mapping):
        raise UsageLimitValidationError(
            ErrorCode.INVALID_STRUCTURE,
            f"{name} usage limits must be an object",
            name,
            section,
        )
    return section


def validate_usage_limits_structure(record: Any, now: Optional[datetime] = None) -> None:
    """Deep-validate a persisted usage-limits record (camelCase wire shape)."""
    if not isinstance(record, Mapping):
        raise UsageLimitValidationError(
            ErrorCode.INVALID_STRUCTURE, "Usage limits must be an object", "usageLimits", record
        )

    oracle = _require_section(record, "oracleQuestions")
    validate_limit(oracle.get("dailyLimit"), "oracleQuestions.dailyLimit")
    validate_count(oracle.get("todayCount"), "oracleQuestions.todayCount")
    validate_date_string(oracle.get("lastResetDate"), "oracleQuestions.lastResetDate", now=now)
    # legacy records also carried a monthly allowance
    if "monthlyLimit" in oracle:
        validate_limit(oracle.get("monthlyLimit"), "oracleQuestions.monthlyLimit")
        validate_count(oracle.get("monthlyCount"), "oracleQuestions.monthlyCount")
        validate_month_string(
            oracle.get("lastMonthlyResetDate"), "oracleQuestions.lastMonthlyResetDate", now=now
        )

    recipes = _require_section(record, "recipes")
    validate_limit(recipes.get("freeLimit"), "recipes.freeLimit")
    validate_count(recipes.get("currentCount"), "recipes.currentCount")

    tracking = _require_section(record, "tracking")
    validate_limit(tracking.get("freeDays"), "tracking.freeDays")
    validate_tracking_start_date(tracking.get("startDate"), now=now)
    validate_count(tracking.get("daysUsed"), "tracking.daysUsed")
