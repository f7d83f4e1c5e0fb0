"""
usage.py — Pydantic schemas for the AI usage limiter.

  UsageRecord     — one counter row as stored in the `rate_limits` collection
  EffectiveUsage  — the row that governs a caller (most restrictive scope)
  Availability    — result of a quota check, returned to routes and clients
  RateLimitStatus — side-by-side user / IP view for support diagnostics
  UsageStats      — admin summary for today
  RecordStats / ServiceBreakdown — maintenance views of the collection
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Scope = Literal["user", "ip"]


# ── Stored row ────────────────────────────────────────────────────────────────

class UsageRecord(BaseModel):
    """Accumulated usage for one identity scope, one UTC day, one service."""
    scope: Scope
    scope_key: str
    service: str
    request_count: int = Field(default=0, ge=0)
    window_start: datetime
    last_request_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    user_id: Optional[str] = None
    ip_address: Optional[str] = None


class EffectiveUsage(BaseModel):
    """Usage that applies to a caller after merging the user and IP rows."""
    request_count: int = 0
    scope: Optional[Scope] = None  # None when neither row exists yet


# ── Quota check ───────────────────────────────────────────────────────────────

class Availability(BaseModel):
    """
    Typed result of a quota check. Blocked callers are never an exception:
    routes map available=False to HTTP 429.
    """
    available: bool
    remaining_requests: int = 0
    request_count: int = 0
    reset_time: str                 # ISO 8601, next 00:00:00 UTC
    reason: Optional[str] = None


# ── Diagnostics ───────────────────────────────────────────────────────────────

class ScopeStatus(BaseModel):
    exists: bool
    request_count: int
    remaining: int


class RateLimitStatus(BaseModel):
    user: ScopeStatus
    ip: ScopeStatus
    service_enabled: bool
    global_limit: int
    daily_limit: int
    current_time_utc: str
    today_boundary_utc: str
    next_reset_utc: str


class DailyUsage(BaseModel):
    requests: int = 0
    unique_users: int = 0
    unique_ips: int = 0
    insights: int = 0


class UsageLimits(BaseModel):
    per_user: int
    global_: int = Field(alias="global")
    reset_time: str

    model_config = ConfigDict(populate_by_name=True)


class UsageStats(BaseModel):
    daily: DailyUsage
    limits: UsageLimits


class RecordStats(BaseModel):
    total: int = 0
    today: int = 0
    expired: int = 0
    cleanup_recommended: bool = False


class ServiceBreakdown(BaseModel):
    service: str
    records: int
    total_requests: int
    unique_users: int
    unique_ips: int


# ── Admin request / response bodies ──────────────────────────────────────────

class ResetUserLimitRequest(BaseModel):
    """Payload for POST /api/v1/admin/reset-user-limit."""
    user_id: str = Field(min_length=1)


class ResetResponse(BaseModel):
    success: bool = True
    message: str
    reset_count: int


class CleanupResponse(BaseModel):
    success: bool = True
    message: str
    cleaned_count: int


class RateLimitStatsResponse(BaseModel):
    success: bool = True
    stats: RecordStats
    breakdown: list[ServiceBreakdown]


class ServiceToggleResponse(BaseModel):
    success: bool
    service_enabled: bool
    message: str
