"""
usage_limiter.py — Daily AI usage quota, per identity and service-wide.

Every AI insight costs a Gemini call, so each caller gets a daily allowance
(default 10) and the whole service a daily ceiling (default 100). Days are
UTC days: counters live in rows whose window_start is 00:00:00 UTC, and
"reset" simply means tomorrow's check looks at a different window_start.

HOW A REQUEST IS COUNTED
────────────────────────
  check_availability(user_id, ip)   read-only; global cap first, then the
                                    most restrictive of the user row and
                                    the IP row (see merge_usage)
  increment_usage(user_id, ip)      one upsert per scope: the user row (when
                                    signed in) and the IP row, so switching
                                    account or network does not reset quota

The two calls are not atomic together: two simultaneous requests can both
pass the check and both increment, overshooting the cap by one each. This is
a fair-use throttle, not a security boundary. The two upserts are not a
transaction either; if the second fails only that scope under-counts.

STORE FAILURES
──────────────
When MongoDB is unreachable the check cannot know the real count. With
fail_open=False (default) the result is "unavailable" so an outage can never
turn into unbounded Gemini spend; fail_open=True lets the request through
and logs a warning. increment_usage propagates errors to the caller; under
fail_open InsightService logs them and serves the request anyway.

USAGE
─────
    from seolens.services.usage_limiter import usage_limiter

    availability = await usage_limiter.check_availability(user_id, ip)
    if availability.available:
        await usage_limiter.increment_usage(user_id, ip)
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from seolens.ai.gemini_client import gemini_client
from seolens.core.config import Settings, settings
from seolens.core.database import get_db
from seolens.models.usage import (
    Availability,
    DailyUsage,
    EffectiveUsage,
    RateLimitStatus,
    ScopeStatus,
    UsageLimits,
    UsageRecord,
    UsageStats,
)
from seolens.services.usage_store import StoreUnavailableError, UsageStore

logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE = "AI service temporarily unavailable"
GLOBAL_LIMIT_REACHED = "Daily global limit reached. Service will reset tomorrow."
USAGE_UNVERIFIED = "Unable to check AI service availability"


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits and policy for one usage counter family."""
    daily_limit: int = 10
    global_daily_limit: int = 100
    service_name: str = "ai_analysis"
    ttl_hours: int = 25
    fail_open: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> RateLimitConfig:
        return cls(
            daily_limit=s.ai_user_daily_limit,
            global_daily_limit=s.ai_daily_limit,
            service_name=s.ai_service_name,
            ttl_hours=s.rate_limit_ttl_hours,
            fail_open=s.rate_limit_fail_open,
        )


# ── Pure helpers ──────────────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_day_start(now: datetime) -> datetime:
    """00:00:00 UTC of the day containing *now* (naive datetimes are taken as UTC)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_reset_time(now: datetime) -> datetime:
    """The next 00:00:00 UTC strictly after *now*."""
    return utc_day_start(now) + timedelta(days=1)


def to_iso(dt: datetime) -> str:
    """ISO 8601 in UTC with a Z suffix, e.g. 2026-10-20T00:00:00Z."""
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def merge_usage(
    user_row: Optional[UsageRecord], ip_row: Optional[UsageRecord]
) -> EffectiveUsage:
    """
    Pick the row that governs a caller: the one with the higher count.

    Ties go to the user row. No rows at all means a fresh identity.
    """
    if user_row and ip_row:
        winner = user_row if user_row.request_count >= ip_row.request_count else ip_row
    else:
        winner = user_row or ip_row

    if winner is None:
        return EffectiveUsage(request_count=0, scope=None)
    return EffectiveUsage(request_count=winner.request_count, scope=winner.scope)


# ── Limiter ───────────────────────────────────────────────────────────────────

class UsageLimiter:
    """
    Daily quota checker and recorder for one service label.

    Args:
        config:      limits and fail policy.
        db_provider: returns the Motor database or None when disconnected.
        configured:  whether the AI collaborator has credentials at all.
        clock:       returns "now"; injectable for tests.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        db_provider: Callable = get_db,
        configured: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.configured = configured
        self.enabled = configured
        self._db_provider = db_provider
        self._clock = clock

    # ── Service switch ────────────────────────────────────────────────────────

    @property
    def service_enabled(self) -> bool:
        return self.configured and self.enabled

    def emergency_disable(self) -> None:
        self.enabled = False
        logger.warning("AI service emergency disabled")

    def enable(self) -> bool:
        """Re-enable the AI feature; no-op (False) when there are no credentials."""
        if not self.configured:
            logger.warning("AI service cannot be enabled: collaborator not configured")
            return False
        self.enabled = True
        logger.info("AI service enabled")
        return True

    # ── Time ──────────────────────────────────────────────────────────────────

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> datetime:
        return utc_day_start(self.now())

    def get_next_reset_time(self) -> str:
        return to_iso(next_reset_time(self.now()))

    def _store(self) -> UsageStore:
        db = self._db_provider()
        if db is None:
            raise StoreUnavailableError("MongoDB is not connected")
        return UsageStore(db)

    # ── Availability ──────────────────────────────────────────────────────────

    async def check_availability(
        self, user_id: Optional[str], ip_address: Optional[str]
    ) -> Availability:
        """May this caller make one more AI request right now?"""
        reset_time = self.get_next_reset_time()

        if not self.service_enabled:
            return Availability(available=False, reason=SERVICE_UNAVAILABLE, reset_time=reset_time)

        try:
            store = self._store()
            today = self.today()
            service = self.config.service_name

            global_usage = await store.sum_requests(service, today)
            if global_usage >= self.config.global_daily_limit:
                logger.info(
                    "Global AI limit reached (%d/%d)", global_usage, self.config.global_daily_limit
                )
                return Availability(
                    available=False, reason=GLOBAL_LIMIT_REACHED, reset_time=reset_time
                )

            user_row = await store.find_row("user", user_id, service, today) if user_id else None
            ip_row = await store.find_row("ip", ip_address, service, today) if ip_address else None
        except Exception as exc:
            return self._unverified(exc, reset_time)

        usage = merge_usage(user_row, ip_row)
        remaining = self.config.daily_limit - usage.request_count

        if remaining <= 0:
            limit = self.config.daily_limit
            return Availability(
                available=False,
                reason=f"Daily limit reached ({limit}/{limit}). AI analysis will reset tomorrow.",
                remaining_requests=0,
                request_count=usage.request_count,
                reset_time=reset_time,
            )

        return Availability(
            available=True,
            remaining_requests=remaining,
            request_count=usage.request_count,
            reset_time=reset_time,
        )

    def _unverified(self, exc: Exception, reset_time: str) -> Availability:
        if self.config.fail_open:
            logger.warning("AI usage check failed, allowing request (fail open): %s", exc)
            return Availability(
                available=True,
                remaining_requests=self.config.daily_limit,
                request_count=0,
                reset_time=reset_time,
            )
        logger.error("AI usage check failed, blocking request (fail closed): %s", exc)
        return Availability(available=False, reason=USAGE_UNVERIFIED, reset_time=reset_time)

    # ── Recording ─────────────────────────────────────────────────────────────

    async def increment_usage(self, user_id: Optional[str], ip_address: Optional[str]) -> None:
        """Charge one attempt to the caller's user row and IP row."""
        store = self._store()
        now = self.now()
        today = utc_day_start(now)
        expires_at = today + timedelta(hours=self.config.ttl_hours)
        service = self.config.service_name

        if user_id:
            await store.increment_row(
                "user", user_id, service, today, now, expires_at,
                set_fields={"ip_address": ip_address},
                insert_fields={"user_id": user_id},
            )
        if ip_address:
            await store.increment_row(
                "ip", ip_address, service, today, now, expires_at,
                insert_fields={"user_id": None, "ip_address": ip_address},
            )

    # ── Aggregates ────────────────────────────────────────────────────────────

    async def get_global_usage(self) -> int:
        return await self._store().sum_requests(self.config.service_name, self.today())

    async def get_usage_stats(self) -> UsageStats:
        """Today's totals for the admin dashboard."""
        store = self._store()
        today = self.today()
        summary = await store.daily_summary(self.config.service_name, today)
        insights = await store.count_insights_since(today)

        return UsageStats(
            daily=DailyUsage(**summary, insights=insights),
            limits=UsageLimits(
                per_user=self.config.daily_limit,
                global_=self.config.global_daily_limit,
                reset_time=self.get_next_reset_time(),
            ),
        )

    # ── Admin / debug ─────────────────────────────────────────────────────────

    async def reset_rate_limits(
        self, user_id: Optional[str] = None, ip_address: Optional[str] = None
    ) -> int:
        """Delete today's rows for a user and/or IP (all of today's rows if neither)."""
        deleted = await self._store().delete_window(
            self.config.service_name, self.today(), user_id=user_id, ip_address=ip_address
        )
        logger.info("Reset %d rate limit records", deleted)
        return deleted

    async def get_rate_limit_status(
        self, user_id: Optional[str], ip_address: Optional[str]
    ) -> RateLimitStatus:
        """Both rows side by side, for "why was I blocked" support cases."""
        store = self._store()
        now = self.now()
        today = utc_day_start(now)
        service = self.config.service_name

        user_row = await store.find_row("user", user_id, service, today) if user_id else None
        ip_row = await store.find_row("ip", ip_address, service, today) if ip_address else None

        return RateLimitStatus(
            user=self._scope_status(user_row),
            ip=self._scope_status(ip_row),
            service_enabled=self.service_enabled,
            global_limit=self.config.global_daily_limit,
            daily_limit=self.config.daily_limit,
            current_time_utc=to_iso(now),
            today_boundary_utc=to_iso(today),
            next_reset_utc=to_iso(next_reset_time(now)),
        )

    def _scope_status(self, row: Optional[UsageRecord]) -> ScopeStatus:
        count = row.request_count if row else 0
        return ScopeStatus(
            exists=row is not None,
            request_count=count,
            remaining=max(0, self.config.daily_limit - count),
        )


# Module-level singleton shared by routes and the insight service
usage_limiter = UsageLimiter(
    RateLimitConfig.from_settings(settings),
    configured=gemini_client.is_configured,
)
