"""Usage-limit engine.

Tracks three independent quotas for the free tier:

* Oracle questions: a daily allowance that rolls over at UTC midnight.
* Recipes: a lifetime allowance with no periodic reset.
* Meal tracking: a trial window of ``free_days`` counted from the first
  tracking action.

Reads and writes go through pure helpers (``reconcile_oracle_quota`` and the
``_reduce_*`` functions) that return new frozen records; the engine commits a
result only after the reducer returned without raising. Premium short-circuits
every gate.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from core.errors import ErrorCode, UsageLimitValidationError
from core.plans import UNLIMITED, SubscriptionTier, is_premium_tier
from core.storage import PersistedStore
from core.validation import (
    atomic_usage_limit_update,
    get_current_date_string,
    get_days_difference,
    safe_increment_count,
    safe_reset_count,
    validate_count,
    validate_date_string,
    validate_limit,
    validate_usage_limits_structure,
)

logger = logging.getLogger("oxalate-app")

STORE_NAME = "subscription-store"


@dataclass(frozen=True)
class OracleQuota:
    daily_limit: int
    today_count: int
    last_reset_date: str


@dataclass(frozen=True)
class RecipeQuota:
    free_limit: int
    current_count: int


@dataclass(frozen=True)
class TrackingQuota:
    free_days: int
    start_date: Optional[str]
    days_used: int

    @property
    def started(self) -> bool:
        return self.start_date is not None


@dataclass(frozen=True)
class UsageLimits:
    oracle_questions: OracleQuota
    recipes: RecipeQuota
    tracking: TrackingQuota

    def to_dict(self) -> dict[str, Any]:
        return {
            "oracleQuestions": {
                "dailyLimit": self.oracle_questions.daily_limit,
                "todayCount": self.oracle_questions.today_count,
                "lastResetDate": self.oracle_questions.last_reset_date,
            },
            "recipes": {
                "freeLimit": self.recipes.free_limit,
                "currentCount": self.recipes.current_count,
            },
            "tracking": {
                "freeDays": self.tracking.free_days,
                "startDate": self.tracking.start_date,
                "daysUsed": self.tracking.days_used,
            },
        }

    @classmethod
    def from_dict(cls, record: Mapping) -> "UsageLimits":
        oracle = record["oracleQuestions"]
        recipes = record["recipes"]
        tracking = record["tracking"]
        return cls(
            oracle_questions=OracleQuota(
                daily_limit=int(oracle["dailyLimit"]),
                today_count=int(oracle["todayCount"]),
                last_reset_date=oracle["lastResetDate"],
            ),
            recipes=RecipeQuota(
                free_limit=int(recipes["freeLimit"]),
                current_count=int(recipes["currentCount"]),
            ),
            tracking=TrackingQuota(
                free_days=int(tracking["freeDays"]),
                start_date=tracking.get("startDate"),
                days_used=int(tracking["daysUsed"]),
            ),
        )


def initial_usage_limits(
    today: str,
    *,
    oracle_daily_limit: int = 5,
    recipe_free_limit: int = 1,
    tracking_free_days: int = 7,
) -> UsageLimits:
    return UsageLimits(
        oracle_questions=OracleQuota(daily_limit=oracle_daily_limit, today_count=0, last_reset_date=today),
        recipes=RecipeQuota(free_limit=recipe_free_limit, current_count=0),
        tracking=TrackingQuota(free_days=tracking_free_days, start_date=None, days_used=0),
    )


def reconcile_oracle_quota(quota: OracleQuota, today: str) -> OracleQuota:
    """Return the quota as it stands ``today``: reset when the stored day is stale."""
    if quota.last_reset_date == today:
        return quota
    return replace(
        quota,
        today_count=safe_reset_count("oracleQuestions.todayCount"),
        last_reset_date=today,
    )


def tracking_elapsed_days(tracking: TrackingQuota, now: Optional[datetime] = None) -> Optional[int]:
    """Inclusive days since the trial started, None before it starts, -1 if unreadable."""
    if not tracking.started:
        return None
    return get_days_difference(tracking.start_date, now=now)


def _tracking_open(tracking: TrackingQuota, now: Optional[datetime]) -> bool:
    elapsed = tracking_elapsed_days(tracking, now)
    if elapsed is None:
        return True
    # an unreadable start date closes the trial rather than reopening it
    return elapsed != -1 and elapsed <= tracking.free_days


def _remaining_tracking_days(tracking: TrackingQuota, now: Optional[datetime]) -> int:
    elapsed = tracking_elapsed_days(tracking, now)
    if elapsed is None:
        return tracking.free_days
    if elapsed == -1:
        return 0
    # the start day itself still leaves the full allowance
    return min(tracking.free_days, max(0, tracking.free_days - elapsed + 1))


class UsageCommand(str, Enum):
    INCREMENT_ORACLE_QUESTIONS = "increment_oracle_questions"
    INCREMENT_RECIPE_COUNT = "increment_recipe_count"
    START_TRACKING = "start_tracking"
    INCREMENT_TRACKING_DAY = "increment_tracking_day"
    RESET_DAILY_LIMITS = "reset_daily_limits"


# Reducers take (limits, today, now) and return (updated limits or None, ok).
Reduction = tuple[Optional[UsageLimits], bool]


def _reduce_increment_oracle(limits: UsageLimits, today: str, now: datetime) -> Reduction:
    current = limits.oracle_questions
    validate_limit(current.daily_limit, "oracleQuestions.dailyLimit")
    validate_count(current.today_count, "oracleQuestions.todayCount")

    quota = reconcile_oracle_quota(current, today)
    if quota.today_count >= quota.daily_limit:
        return None, False

    quota = replace(
        quota,
        today_count=safe_increment_count(quota.today_count, "oracleQuestions.todayCount"),
    )
    return replace(limits, oracle_questions=quota), True


def _reduce_increment_recipe(limits: UsageLimits, today: str, now: datetime) -> Reduction:
    quota = limits.recipes
    validate_limit(quota.free_limit, "recipes.freeLimit")
    validate_count(quota.current_count, "recipes.currentCount")

    if quota.current_count >= quota.free_limit:
        return None, False

    quota = replace(
        quota,
        current_count=safe_increment_count(quota.current_count, "recipes.currentCount"),
    )
    return replace(limits, recipes=quota), True


def _reduce_start_tracking(limits: UsageLimits, today: str, now: datetime) -> Reduction:
    if limits.tracking.started:
        return None, True

    validate_date_string(today, "tracking.startDate", now=now)
    tracking = replace(limits.tracking, start_date=today, days_used=1)
    return replace(limits, tracking=tracking), True


def _reduce_increment_tracking_day(limits: UsageLimits, today: str, now: datetime) -> Reduction:
    tracking = limits.tracking
    if not tracking.started:
        return _reduce_start_tracking(limits, today, now)

    validate_limit(tracking.free_days, "tracking.freeDays")
    if not _tracking_open(tracking, now):
        return None, False

    tracking = replace(
        tracking,
        days_used=safe_increment_count(tracking.days_used, "tracking.daysUsed"),
    )
    return replace(limits, tracking=tracking), True


def _reduce_reset_daily_limits(limits: UsageLimits, today: str, now: datetime) -> Reduction:
    quota = reconcile_oracle_quota(limits.oracle_questions, today)
    if quota == limits.oracle_questions:
        return None, True
    return replace(limits, oracle_questions=quota), True


_REDUCERS: dict[UsageCommand, Callable[[UsageLimits, str, datetime], Reduction]] = {
    UsageCommand.INCREMENT_ORACLE_QUESTIONS: _reduce_increment_oracle,
    UsageCommand.INCREMENT_RECIPE_COUNT: _reduce_increment_recipe,
    UsageCommand.START_TRACKING: _reduce_start_tracking,
    UsageCommand.INCREMENT_TRACKING_DAY: _reduce_increment_tracking_day,
    UsageCommand.RESET_DAILY_LIMITS: _reduce_reset_daily_limits,
}

# commands that consume a quota and are therefore skipped under premium
_QUOTA_COMMANDS = frozenset(
    {
        UsageCommand.INCREMENT_ORACLE_QUESTIONS,
        UsageCommand.INCREMENT_RECIPE_COUNT,
        UsageCommand.START_TRACKING,
        UsageCommand.INCREMENT_TRACKING_DAY,
    }
)


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class UsageLimitEngine:
    def __init__(
        self,
        tier_provider: Callable[[], SubscriptionTier],
        *,
        store: Optional[PersistedStore] = None,
        clock: Callable[[], datetime] = utc_clock,
        oracle_daily_limit: int = 5,
        recipe_free_limit: int = 1,
        tracking_free_days: int = 7,
    ):
        validate_limit(oracle_daily_limit, "oracleQuestions.dailyLimit")
        validate_limit(recipe_free_limit, "recipes.freeLimit")
        validate_limit(tracking_free_days, "tracking.freeDays")

        self._tier_provider = tier_provider
        self._store = store
        self._clock = clock
        self._defaults = {
            "oracle_daily_limit": oracle_daily_limit,
            "recipe_free_limit": recipe_free_limit,
            "tracking_free_days": tracking_free_days,
        }
        self._limits = self._initial_limits(self._today())
        self._dirty = False

    def _today(self, now: Optional[datetime] = None) -> str:
        return get_current_date_string(now or self._clock())

    def _initial_limits(self, today: str) -> UsageLimits:
        return initial_usage_limits(today, **self._defaults)

    def _is_premium(self) -> bool:
        return is_premium_tier(self._tier_provider())

    @property
    def dirty(self) -> bool:
        return self._dirty

    def snapshot(self) -> UsageLimits:
        return self._limits

    # -----------------------------
    # Commands
    # -----------------------------
    def dispatch(self, command: UsageCommand) -> bool:
        """Single mutation entry point: validate, reduce, then commit."""
        if command in _QUOTA_COMMANDS and self._is_premium():
            return True

        now = self._clock()
        today = self._today(now)
        reducer = _REDUCERS[command]
        current = self._limits

        updated, ok = atomic_usage_limit_update(
            lambda: reducer(current, today, now), command.value
        )
        if updated is not None and updated != current:
            self._limits = updated
            self._dirty = True
        return ok

    def increment_oracle_questions(self) -> bool:
        return self.dispatch(UsageCommand.INCREMENT_ORACLE_QUESTIONS)

    def increment_recipe_count(self) -> bool:
        return self.dispatch(UsageCommand.INCREMENT_RECIPE_COUNT)

    def start_tracking(self) -> bool:
        return self.dispatch(UsageCommand.START_TRACKING)

    def increment_tracking_day(self) -> bool:
        return self.dispatch(UsageCommand.INCREMENT_TRACKING_DAY)

    def reset_daily_limits(self) -> bool:
        return self.dispatch(UsageCommand.RESET_DAILY_LIMITS)

    # -----------------------------
    # Gates
    # -----------------------------
    def can_ask_oracle_question(self) -> bool:
        if self._is_premium():
            return True
        quota = reconcile_oracle_quota(self._limits.oracle_questions, self._today())
        return quota.today_count < quota.daily_limit

    def get_remaining_oracle_questions(self) -> int:
        if self._is_premium():
            return UNLIMITED
        quota = reconcile_oracle_quota(self._limits.oracle_questions, self._today())
        return max(0, quota.daily_limit - quota.today_count)

    def can_create_recipe(self) -> bool:
        if self._is_premium():
            return True
        quota = self._limits.recipes
        return quota.current_count < quota.free_limit

    def get_remaining_recipes(self) -> int:
        if self._is_premium():
            return UNLIMITED
        quota = self._limits.recipes
        return max(0, quota.free_limit - quota.current_count)

    def can_track(self) -> bool:
        if self._is_premium():
            return True
        return _tracking_open(self._limits.tracking, self._clock())

    def get_remaining_tracking_days(self) -> int:
        if self._is_premium():
            return UNLIMITED
        return _remaining_tracking_days(self._limits.tracking, self._clock())

    def usage_summary(self) -> dict[str, Any]:
        now = self._clock()
        limits = self._limits
        oracle = reconcile_oracle_quota(limits.oracle_questions, self._today(now))
        return {
            "tier": self._tier_provider().value,
            "oracle_questions": {
                "allowed": self.can_ask_oracle_question(),
                "remaining": self.get_remaining_oracle_questions(),
                "used": oracle.today_count,
                "limit": oracle.daily_limit,
            },
            "recipes": {
                "allowed": self.can_create_recipe(),
                "remaining": self.get_remaining_recipes(),
                "used": limits.recipes.current_count,
                "limit": limits.recipes.free_limit,
            },
            "tracking": {
                "allowed": self.can_track(),
                "remaining": self.get_remaining_tracking_days(),
                "used": limits.tracking.days_used,
                "limit": limits.tracking.free_days,
                "start_date": limits.tracking.start_date,
            },
        }

    # -----------------------------
    # Persistence
    # -----------------------------
    async def restore(self) -> UsageLimits:
        """Load persisted limits once at startup; corrupted records fall back to defaults."""
        if self._store is None:
            return self._limits

        record = await self._store.load()
        if record is None:
            return self._limits

        now = self._clock()
        limits = self._limits_from_record(record, now)
        if limits is None:
            self._limits = self._initial_limits(self._today(now))
            self._dirty = True
        else:
            self._limits = limits
            self._dirty = limits.to_dict() != record
        return self._limits

    def _limits_from_record(self, record: Any, now: datetime) -> Optional[UsageLimits]:
        rolled = record
        try:
            rolled = _roll_over_record(record, self._today(now), now)
            validate_usage_limits_structure(rolled, now=now)
        except UsageLimitValidationError as exc:
            if not _is_expired_trial(exc) or not _days_used_valid(rolled):
                logger.warning(
                    "usage_limits_restore_rejected",
                    extra={"code": exc.code.value, "field": exc.field},
                )
                return None
            logger.info("usage_limits_restored_expired_trial", extra={"field": exc.field})
        return UsageLimits.from_dict(rolled)

    async def flush(self) -> bool:
        """Write the limits if a command changed them since the last write."""
        if self._store is None or not self._dirty:
            return False
        await self._store.save(self._limits.to_dict())
        self._dirty = False
        return True


def _roll_over_record(record: Any, today: str, now: datetime) -> Any:
    """Reset a stale Oracle day in a persisted record.

    The stored count and date are validated as stored first; only a readable
    earlier day is rolled over.
    """
    if not isinstance(record, Mapping):
        return record
    oracle = record.get("oracleQuestions")
    if not isinstance(oracle, Mapping) or oracle.get("lastResetDate") == today:
        return record

    validate_count(oracle.get("todayCount"), "oracleQuestions.todayCount")
    last_reset = oracle.get("lastResetDate")
    try:
        validate_date_string(last_reset, "oracleQuestions.lastResetDate", now=now)
    except UsageLimitValidationError as exc:
        # an old day is still a valid day to roll over from
        if exc.code is not ErrorCode.DATE_TOO_OLD:
            raise
    if last_reset > today:
        return record
    return {**record, "oracleQuestions": {**oracle, "todayCount": 0, "lastResetDate": today}}


def _is_expired_trial(exc: UsageLimitValidationError) -> bool:
    # a trial that started long ago is over, not corrupted
    return exc.field == "tracking.startDate" and exc.code in (
        ErrorCode.START_DATE_TOO_OLD,
        ErrorCode.DATE_TOO_OLD,
    )


def _days_used_valid(record: Mapping) -> bool:
    try:
        validate_count(record["tracking"].get("daysUsed"), "tracking.daysUsed")
    except UsageLimitValidationError:
        return False
    return True
