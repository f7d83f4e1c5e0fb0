"""
GET /health: process liveness plus the two things AI insights depend on.

  database    "connected" when a ping answers right now. A startup outage
              leaves the client in place, so this flips back on its own.
  ai_service  the in-process switch (credentials present and not
              emergency-disabled). It says nothing about today's quota.

While database is "disconnected" the usage limiter applies its fail policy:
closed by default, so insight requests get 429 until MongoDB answers.
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from seolens.core import database as db_module
from seolens.core.config import settings
from seolens.services.usage_limiter import usage_limiter

logger = logging.getLogger(__name__)
router = APIRouter()

API_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    database: str  # "connected" | "disconnected"
    ai_service: str  # "enabled" | "disabled"
    environment: str


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check() -> HealthResponse:
    """Liveness is HTTP 200 even when the database is disconnected."""
    db_status = "disconnected"
    try:
        # Access via module reference so tests can patch db_module.db_client
        if db_module.db_client.client is not None:
            await db_module.db_client.client.admin.command("ping")
            db_status = "connected"
    except Exception as exc:
        logger.warning("DB ping failed: %s", exc)

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        database=db_status,
        ai_service="enabled" if usage_limiter.service_enabled else "disabled",
        environment=settings.environment,
    )
