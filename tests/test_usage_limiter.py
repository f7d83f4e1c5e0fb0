"""
test_usage_limiter.py — Daily quota checks, recording, stats and resets.

Runs UsageLimiter against the in-memory FakeDB with a fixed clock
(2026-10-19 14:30 UTC), so day boundaries are deterministic.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from seolens.services.usage_limiter import (
    GLOBAL_LIMIT_REACHED,
    SERVICE_UNAVAILABLE,
    USAGE_UNVERIFIED,
    RateLimitConfig,
    UsageLimiter,
)
from seolens.services.usage_store import StoreUnavailableError

UTC = timezone.utc
TODAY = datetime(2026, 10, 19, tzinfo=UTC)
USER = "user-1"
IP = "203.0.113.7"


@pytest.fixture()
def make_limiter(fake_db, clock):
    def _make(**config) -> UsageLimiter:
        return UsageLimiter(RateLimitConfig(**config), db_provider=lambda: fake_db, clock=clock)
    return _make


@pytest.fixture()
def limiter(make_limiter):
    return make_limiter()


def _rows(fake_db) -> list[dict]:
    return fake_db["rate_limits"].docs


def _seed(fake_db, scope: str, key: str, count: int, day: datetime = TODAY) -> None:
    fake_db["rate_limits"].docs.append(
        {
            "scope": scope,
            "scope_key": key,
            "service": "ai_analysis",
            "window_start": day,
            "request_count": count,
            "user_id": key if scope == "user" else None,
            "ip_address": key if scope == "ip" else None,
        }
    )


# ── Scenarios ─────────────────────────────────────────────────────────────────

class TestScenarios:
    async def test_fresh_identity_has_full_quota(self, limiter, fake_db):
        result = await limiter.check_availability(USER, IP)
        assert result.available is True
        assert result.remaining_requests == 10
        assert result.request_count == 0
        assert result.reset_time == "2026-10-20T00:00:00Z"
        # Checks never create rows
        assert _rows(fake_db) == []

    async def test_blocked_after_daily_limit(self, limiter):
        for _ in range(10):
            await limiter.increment_usage(USER, IP)

        result = await limiter.check_availability(USER, IP)
        assert result.available is False
        assert "limit reached" in result.reason
        assert result.reason == "Daily limit reached (10/10). AI analysis will reset tomorrow."
        assert result.remaining_requests == 0
        assert result.request_count == 10

    async def test_global_limit_blocks_new_identity(self, limiter):
        for i in range(10):
            for _ in range(10):
                await limiter.increment_usage(None, f"10.0.0.{i}")

        assert await limiter.get_global_usage() == 100
        result = await limiter.check_availability("brand-new-user", "198.51.100.1")
        assert result.available is False
        assert result.reason == GLOBAL_LIMIT_REACHED
        assert "global" in result.reason.lower()
        assert result.remaining_requests == 0
        assert result.reset_time == "2026-10-20T00:00:00Z"

    async def test_admin_reset_restores_quota(self, limiter, fake_db):
        for _ in range(10):
            await limiter.increment_usage(USER, IP)
        assert (await limiter.check_availability(USER, IP)).available is False

        deleted = await limiter.reset_rate_limits(user_id=USER, ip_address=IP)
        assert deleted == 2
        assert _rows(fake_db) == []

        result = await limiter.check_availability(USER, IP)
        assert result.available is True
        assert result.remaining_requests == 10

    async def test_ip_row_dominates_user_row(self, limiter, fake_db):
        _seed(fake_db, "user", USER, 4)
        _seed(fake_db, "ip", IP, 6)

        result = await limiter.check_availability(USER, IP)
        assert result.available is True
        assert result.request_count == 6
        assert result.remaining_requests == 4


# ── Properties ────────────────────────────────────────────────────────────────

class TestProperties:
    async def test_count_is_monotonic(self, limiter, fake_db):
        seen = []
        for _ in range(5):
            await limiter.increment_usage(USER, IP)
            user_row = next(r for r in _rows(fake_db) if r["scope"] == "user")
            seen.append(user_row["request_count"])
        assert seen == [1, 2, 3, 4, 5]

    async def test_counting_continues_past_the_limit(self, limiter, fake_db):
        for _ in range(12):
            await limiter.increment_usage(None, IP)
        assert _rows(fake_db)[0]["request_count"] == 12

    async def test_day_rollover(self, limiter, fake_db, clock):
        for _ in range(10):
            await limiter.increment_usage(USER, IP)
        assert (await limiter.check_availability(USER, IP)).available is False

        clock.advance(timedelta(days=1))
        result = await limiter.check_availability(USER, IP)
        assert result.available is True
        assert result.request_count == 0
        assert result.reset_time == "2026-10-21T00:00:00Z"

        await limiter.increment_usage(USER, IP)
        assert len(_rows(fake_db)) == 4
        tomorrow = [r for r in _rows(fake_db) if r["window_start"] == TODAY + timedelta(days=1)]
        assert {r["request_count"] for r in tomorrow} == {1}

    async def test_most_restrictive_scope_wins(self, limiter, fake_db):
        _seed(fake_db, "user", USER, 8)
        _seed(fake_db, "ip", IP, 3)

        result = await limiter.check_availability(USER, IP)
        assert result.remaining_requests == 2

    async def test_global_cap_short_circuits_fresh_identity(self, make_limiter, fake_db):
        limiter = make_limiter(global_daily_limit=5)
        _seed(fake_db, "ip", "10.0.0.1", 5)

        result = await limiter.check_availability("someone", "10.0.0.2")
        assert result.available is False
        assert result.reason == GLOBAL_LIMIT_REACHED
        assert result.remaining_requests == 0
        assert result.reset_time == "2026-10-20T00:00:00Z"

    async def test_concurrent_increments_are_not_lost(self, limiter, fake_db):
        await asyncio.gather(*(limiter.increment_usage(USER, IP) for _ in range(25)))

        assert len(_rows(fake_db)) == 2
        assert {r["request_count"] for r in _rows(fake_db)} == {25}
        assert await limiter.get_global_usage() == 50

    async def test_reset_is_idempotent(self, limiter):
        await limiter.increment_usage(USER, IP)
        assert await limiter.reset_rate_limits(user_id=USER) == 1
        assert await limiter.reset_rate_limits(user_id=USER) == 0


# ── Recording ─────────────────────────────────────────────────────────────────

class TestIncrementUsage:
    async def test_writes_user_and_ip_rows(self, limiter, fake_db, clock):
        await limiter.increment_usage(USER, IP)

        user_row = next(r for r in _rows(fake_db) if r["scope"] == "user")
        ip_row = next(r for r in _rows(fake_db) if r["scope"] == "ip")

        assert user_row["scope_key"] == USER
        assert user_row["user_id"] == USER
        assert user_row["ip_address"] == IP
        assert ip_row["scope_key"] == IP
        assert ip_row["user_id"] is None
        for row in (user_row, ip_row):
            assert row["request_count"] == 1
            assert row["window_start"] == TODAY
            assert row["last_request_at"] == clock.now
            assert row["expires_at"] == TODAY + timedelta(hours=25)

    async def test_anonymous_caller_only_writes_ip_row(self, limiter, fake_db):
        await limiter.increment_usage(None, IP)
        assert [r["scope"] for r in _rows(fake_db)] == ["ip"]

    async def test_user_row_tracks_latest_ip(self, limiter, fake_db):
        await limiter.increment_usage(USER, IP)
        await limiter.increment_usage(USER, "198.51.100.9")

        user_row = next(r for r in _rows(fake_db) if r["scope"] == "user")
        assert user_row["request_count"] == 2
        assert user_row["ip_address"] == "198.51.100.9"

    async def test_user_quota_follows_user_across_networks(self, limiter):
        for _ in range(10):
            await limiter.increment_usage(USER, IP)
        result = await limiter.check_availability(USER, "198.51.100.9")
        assert result.available is False

    async def test_raises_without_database(self, clock):
        limiter = UsageLimiter(RateLimitConfig(), db_provider=lambda: None, clock=clock)
        with pytest.raises(StoreUnavailableError):
            await limiter.increment_usage(USER, IP)


# ── Store failures / switch ───────────────────────────────────────────────────

class TestFailurePolicy:
    async def test_fails_closed_without_database(self, clock):
        limiter = UsageLimiter(RateLimitConfig(), db_provider=lambda: None, clock=clock)
        result = await limiter.check_availability(USER, IP)
        assert result.available is False
        assert result.reason == USAGE_UNVERIFIED
        assert result.reset_time == "2026-10-20T00:00:00Z"

    async def test_fails_closed_on_store_error(self, limiter, fake_db):
        fake_db.fail_all(ServerSelectionTimeoutError("no servers"))
        result = await limiter.check_availability(USER, IP)
        assert result.available is False
        assert result.reason == USAGE_UNVERIFIED

    async def test_fail_open_allows_request(self, make_limiter, fake_db):
        limiter = make_limiter(fail_open=True)
        fake_db.fail_all(ServerSelectionTimeoutError("no servers"))

        result = await limiter.check_availability(USER, IP)
        assert result.available is True
        assert result.remaining_requests == 10

    async def test_unconfigured_service_skips_store(self, clock):
        provider = MagicMock()
        limiter = UsageLimiter(RateLimitConfig(), db_provider=provider, configured=False, clock=clock)

        result = await limiter.check_availability(USER, IP)
        assert result.available is False
        assert result.reason == SERVICE_UNAVAILABLE
        provider.assert_not_called()

    async def test_emergency_disable_and_enable(self, limiter):
        limiter.emergency_disable()
        assert limiter.service_enabled is False
        assert (await limiter.check_availability(USER, IP)).reason == SERVICE_UNAVAILABLE

        assert limiter.enable() is True
        assert (await limiter.check_availability(USER, IP)).available is True

    async def test_enable_is_noop_without_credentials(self, fake_db, clock):
        limiter = UsageLimiter(
            RateLimitConfig(), db_provider=lambda: fake_db, configured=False, clock=clock
        )
        assert limiter.enable() is False
        assert limiter.service_enabled is False


# ── Stats / diagnostics ───────────────────────────────────────────────────────

class TestStats:
    async def test_usage_stats(self, limiter, fake_db):
        await limiter.increment_usage("user-1", "10.0.0.1")
        await limiter.increment_usage("user-2", "10.0.0.2")
        await limiter.increment_usage(None, "10.0.0.3")
        fake_db["ai_insights"].docs.append({"created_at": TODAY + timedelta(hours=9)})
        fake_db["ai_insights"].docs.append({"created_at": TODAY - timedelta(hours=1)})

        stats = await limiter.get_usage_stats()
        assert stats.daily.requests == 5  # 2 user rows + 3 IP rows
        assert stats.daily.unique_users == 2
        assert stats.daily.unique_ips == 3
        assert stats.daily.insights == 1
        assert stats.limits.per_user == 10
        assert stats.limits.model_dump(by_alias=True)["global"] == 100
        assert stats.limits.reset_time == "2026-10-20T00:00:00Z"

    async def test_global_usage_ignores_other_days_and_services(self, limiter, fake_db):
        _seed(fake_db, "ip", "10.0.0.1", 7)
        _seed(fake_db, "ip", "10.0.0.1", 50, day=TODAY - timedelta(days=1))
        fake_db["rate_limits"].docs.append(
            {"scope": "ip", "scope_key": "x", "service": "other", "window_start": TODAY, "request_count": 30}
        )
        assert await limiter.get_global_usage() == 7

    async def test_rate_limit_status(self, limiter):
        for _ in range(3):
            await limiter.increment_usage(USER, IP)
        await limiter.increment_usage(None, IP)

        status = await limiter.get_rate_limit_status(USER, IP)
        assert status.user.exists is True
        assert status.user.request_count == 3
        assert status.user.remaining == 7
        assert status.ip.request_count == 4
        assert status.ip.remaining == 6
        assert status.service_enabled is True
        assert status.daily_limit == 10
        assert status.global_limit == 100
        assert status.current_time_utc == "2026-10-19T14:30:00Z"
        assert status.today_boundary_utc == "2026-10-19T00:00:00Z"
        assert status.next_reset_utc == "2026-10-20T00:00:00Z"

    async def test_rate_limit_status_for_unknown_identity(self, limiter):
        status = await limiter.get_rate_limit_status("nobody", None)
        assert status.user.exists is False
        assert status.user.remaining == 10
        assert status.ip.exists is False

    async def test_reset_without_identity_clears_today_only(self, limiter, fake_db):
        await limiter.increment_usage(USER, IP)
        _seed(fake_db, "ip", IP, 9, day=TODAY - timedelta(days=1))

        assert await limiter.reset_rate_limits() == 2
        assert len(_rows(fake_db)) == 1
        assert _rows(fake_db)[0]["window_start"] == TODAY - timedelta(days=1)
