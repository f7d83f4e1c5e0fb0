"""
admin.py — Operator endpoints for the AI usage limiter.

Routes:
  GET  /api/v1/admin/usage-stats         — today's totals + configured limits
  GET  /api/v1/admin/rate-limit-status   — user / IP rows side by side
  GET  /api/v1/admin/rate-limit-stats    — collection health + per-service totals
  POST /api/v1/admin/reset-user-limit    — clear today's rows for one user
  POST /api/v1/admin/reset-my-limit      — clear today's rows for the caller
  POST /api/v1/admin/cleanup-rate-limits — run the stale-row sweep now
  POST /api/v1/admin/emergency-reset     — delete every row of the service
  POST /api/v1/admin/ai/disable          — switch the AI feature off
  POST /api/v1/admin/ai/enable           — switch it back on

All routes require a valid Bearer token and return 503 when MongoDB is
unavailable (the AI toggles excepted; they only flip in-process state).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from seolens.core.database import get_db
from seolens.models.usage import (
    CleanupResponse,
    RateLimitStatsResponse,
    RateLimitStatus,
    ResetResponse,
    ResetUserLimitRequest,
    ServiceToggleResponse,
    UsageStats,
)
from seolens.routes.deps import ClientIp, RequiredUserId
from seolens.services.usage_cleanup import rate_limit_cleanup
from seolens.services.usage_limiter import usage_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _require_db(db=Depends(get_db)):
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return db


# ── Read-only ─────────────────────────────────────────────────────────────────

@router.get("/usage-stats", response_model=UsageStats)
async def usage_stats(_admin: RequiredUserId, _db=Depends(_require_db)):
    return await usage_limiter.get_usage_stats()


@router.get("/rate-limit-status", response_model=RateLimitStatus)
async def rate_limit_status(
    admin_id: RequiredUserId,
    caller_ip: ClientIp,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    _db=Depends(_require_db),
):
    """
    Diagnose why a caller is (or isn't) blocked.

    Without query parameters this reports on the caller itself.
    """
    if user_id is None and ip_address is None:
        user_id, ip_address = admin_id, caller_ip
    return await usage_limiter.get_rate_limit_status(user_id, ip_address)


@router.get("/rate-limit-stats", response_model=RateLimitStatsResponse)
async def rate_limit_stats(_admin: RequiredUserId, _db=Depends(_require_db)):
    return RateLimitStatsResponse(
        stats=await rate_limit_cleanup.get_record_stats(),
        breakdown=await rate_limit_cleanup.get_service_breakdown(),
    )


# ── Resets ────────────────────────────────────────────────────────────────────

@router.post("/reset-user-limit", response_model=ResetResponse)
async def reset_user_limit(
    payload: ResetUserLimitRequest, admin_id: RequiredUserId, _db=Depends(_require_db)
):
    deleted = await usage_limiter.reset_rate_limits(user_id=payload.user_id)
    logger.warning("Admin %s reset AI limits for user %s", admin_id, payload.user_id)
    return ResetResponse(
        message=f"Rate limits reset for user {payload.user_id}", reset_count=deleted
    )


@router.post("/reset-my-limit", response_model=ResetResponse)
async def reset_my_limit(user_id: RequiredUserId, ip_address: ClientIp, _db=Depends(_require_db)):
    """Development helper: clear the caller's own user and IP rows."""
    deleted = await usage_limiter.reset_rate_limits(user_id=user_id, ip_address=ip_address)
    return ResetResponse(message="Your rate limits have been reset", reset_count=deleted)


@router.post("/cleanup-rate-limits", response_model=CleanupResponse)
async def cleanup_rate_limits(_admin: RequiredUserId, _db=Depends(_require_db)):
    cleaned = await rate_limit_cleanup.cleanup_expired_records()
    return CleanupResponse(
        message=f"Cleaned up {cleaned} expired rate limit records", cleaned_count=cleaned
    )


@router.post("/emergency-reset", response_model=ResetResponse)
async def emergency_reset(admin_id: RequiredUserId, _db=Depends(_require_db)):
    deleted = await rate_limit_cleanup.emergency_reset()
    logger.warning("Admin %s ran an emergency reset of AI usage", admin_id)
    return ResetResponse(
        message=f"Emergency reset completed: {deleted} records deleted", reset_count=deleted
    )


# ── Feature switch ────────────────────────────────────────────────────────────

@router.post("/ai/disable", response_model=ServiceToggleResponse)
async def disable_ai(admin_id: RequiredUserId):
    usage_limiter.emergency_disable()
    logger.warning("Admin %s disabled the AI service", admin_id)
    return ServiceToggleResponse(
        success=True, service_enabled=False, message="AI service disabled"
    )


@router.post("/ai/enable", response_model=ServiceToggleResponse)
async def enable_ai(_admin: RequiredUserId):
    if not usage_limiter.enable():
        return ServiceToggleResponse(
            success=False,
            service_enabled=False,
            message="AI service cannot be enabled: Gemini is not configured",
        )
    return ServiceToggleResponse(success=True, service_enabled=True, message="AI service enabled")
