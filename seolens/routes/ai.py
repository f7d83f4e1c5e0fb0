"""
ai.py — AI insight endpoints for the dashboard.

Routes:
  GET  /api/v1/ai/usage     — the caller's remaining daily quota
  POST /api/v1/ai/insights  — Gemini recommendations for a finished analysis

Both are public: signed-in callers (Bearer token) are counted per user AND
per IP, anonymous callers per IP only. Every response carries
X-RateLimit-Limit / X-RateLimit-Remaining / X-RateLimit-Reset so the
front-end can render the usage meter without a second call.
"""

import logging

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from seolens.core.config import settings
from seolens.core.rate_limit import limiter
from seolens.models.insight import AnalysisInput, InsightResponse
from seolens.models.usage import Availability
from seolens.routes.deps import ClientIp, OptionalUserId
from seolens.services.insights import GENERATION_FAILED, insight_service
from seolens.services.usage_limiter import usage_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/ai", tags=["ai"])


def _rate_limit_headers(availability: Availability) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(usage_limiter.config.daily_limit),
        "X-RateLimit-Remaining": str(availability.remaining_requests),
        "X-RateLimit-Reset": availability.reset_time,
    }


@router.get("/usage", response_model=Availability)
async def get_usage(response: Response, user_id: OptionalUserId, ip_address: ClientIp):
    """Quota for the caller. Read-only: checking never charges a request."""
    availability = await usage_limiter.check_availability(user_id, ip_address)
    response.headers.update(_rate_limit_headers(availability))
    return availability


@router.post("/insights", response_model=InsightResponse)
@limiter.limit(settings.insights_burst_limit)
async def generate_insights(
    request: Request,
    payload: AnalysisInput,
    user_id: OptionalUserId,
    ip_address: ClientIp,
):
    """
    Generate AI insights for an SEO analysis.

    429 when the caller, or the whole service, is out of quota for today.
    503 when generation failed for another reason (quota was still charged).
    Gemini errors do not fail the request: the body then carries fallback
    insights with fallback=true.
    """
    result = await insight_service.generate(payload, user_id, ip_address)
    headers = _rate_limit_headers(result.availability)

    if result.success:
        return JSONResponse(content=result.model_dump(mode="json"), headers=headers)

    if result.error != GENERATION_FAILED:
        logger.info(
            "AI insights blocked (user=%s, ip=%s): %s", user_id, ip_address, result.error
        )
        code = status.HTTP_429_TOO_MANY_REQUESTS
    else:
        code = status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=code, content=result.model_dump(mode="json"), headers=headers
    )
