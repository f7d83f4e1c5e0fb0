"""
usage_cleanup.py — Maintenance for the `rate_limits` collection.

MongoDB's TTL monitor deletes rows once expires_at passes, but it runs
roughly once a minute and silently does nothing if the index was never
created or was built with the wrong options. The sweep here is the backstop:
rows whose window started more than ttl_hours ago are deleted directly.

Every method logs and degrades (returns 0 / empty stats) instead of raising,
so a maintenance problem never takes down the request path or the
background task.
"""

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import Callable, Optional

from seolens.core.config import settings
from seolens.core.database import ensure_indexes, get_db
from seolens.models.usage import RecordStats, ServiceBreakdown
from seolens.services.usage_limiter import RateLimitConfig, usage_limiter, utc_day_start, utcnow
from seolens.services.usage_store import StoreUnavailableError, UsageStore

logger = logging.getLogger(__name__)

# Lingering expired rows above this suggest the TTL index is not doing its job
_CLEANUP_RECOMMENDED_ABOVE = 100


class RateLimitCleanup:
    """Sweep, statistics and emergency reset for usage rows."""

    def __init__(
        self,
        config: RateLimitConfig,
        db_provider: Callable = get_db,
        clock: Callable = utcnow,
    ) -> None:
        self.config = config
        self._db_provider = db_provider
        self._clock = clock

    def _store(self) -> UsageStore:
        db = self._db_provider()
        if db is None:
            raise StoreUnavailableError("MongoDB is not connected")
        return UsageStore(db)

    def _cutoff(self):
        return self._clock() - timedelta(hours=self.config.ttl_hours)

    async def cleanup_expired_records(self) -> int:
        """Delete rows older than the TTL window. Returns the number deleted."""
        try:
            deleted = await self._store().delete_older_than(self._cutoff())
        except Exception as exc:
            logger.error("Error cleaning up expired rate limit records: %s", exc)
            return 0

        if deleted > 0:
            logger.info("Cleaned up %d expired rate limit records", deleted)
        return deleted

    async def get_record_stats(self) -> RecordStats:
        try:
            store = self._store()
            today = utc_day_start(self._clock())
            total = await store.count_rows()
            today_count = await store.count_rows({"window_start": {"$gte": today}})
            expired = await store.count_rows({"window_start": {"$lt": self._cutoff()}})
        except Exception as exc:
            logger.error("Error getting rate limit stats: %s", exc)
            return RecordStats()

        return RecordStats(
            total=total,
            today=today_count,
            expired=expired,
            cleanup_recommended=expired > _CLEANUP_RECOMMENDED_ABOVE,
        )

    async def get_service_breakdown(self) -> list[ServiceBreakdown]:
        try:
            return await self._store().service_breakdown(utc_day_start(self._clock()))
        except Exception as exc:
            logger.error("Error getting service breakdown: %s", exc)
            return []

    async def emergency_reset(self) -> int:
        """Delete every row of the service, whatever its day."""
        try:
            deleted = await self._store().delete_service(self.config.service_name)
        except Exception as exc:
            logger.error("Error during emergency reset: %s", exc)
            return 0

        logger.warning("Emergency reset: deleted %d rate limit records", deleted)
        return deleted


class CleanupScheduler:
    """
    Runs RateLimitCleanup.cleanup_expired_records on a fixed interval and
    retries index creation until it has succeeded once.
    """

    def __init__(self, cleanup: RateLimitCleanup, interval_minutes: int) -> None:
        self.cleanup = cleanup
        self.interval_minutes = interval_minutes
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval_minutes <= 0:
            logger.info("Rate limit cleanup scheduler disabled")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="rate-limit-cleanup")
        logger.info(
            "Rate limit cleanup scheduler started (runs every %d min)", self.interval_minutes
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Rate limit cleanup scheduler stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_minutes * 60)
            await self.cleanup.cleanup_expired_records()
            # no-op once the indexes exist; covers a startup without MongoDB
            await ensure_indexes()


rate_limit_cleanup = RateLimitCleanup(usage_limiter.config)
cleanup_scheduler = CleanupScheduler(
    rate_limit_cleanup, settings.rate_limit_cleanup_interval_minutes
)
