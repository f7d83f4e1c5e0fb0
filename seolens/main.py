"""
SEO Lens API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups, and
manages the MongoDB connection and the rate-limit cleanup task.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from seolens.core.config import settings
from seolens.core.database import close_mongo_connection, connect_to_mongo
from seolens.core.rate_limit import limiter
from seolens.routes.admin import router as admin_router
from seolens.routes.ai import router as ai_router
from seolens.routes.health import API_VERSION, router as health_router
from seolens.services.usage_cleanup import cleanup_scheduler

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: connect to MongoDB (indexes included), start the cleanup task.
    Shutdown: the reverse.
    """
    logger.info("Starting SEO Lens API (env: %s)", settings.environment)
    await connect_to_mongo()
    cleanup_scheduler.start()
    yield
    logger.info("Shutting down SEO Lens API")
    await cleanup_scheduler.stop()
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="SEO Lens API",
    description=(
        "AI-generated SEO insights with per-user, per-IP and global daily quotas. "
        "AI recommendations are suggestions, not guarantees of ranking changes."
    ),
    version=API_VERSION,
    lifespan=lifespan,
    # Disable docs in production to reduce attack surface
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Per-minute burst limits (slowapi). The daily quota lives in
# services/usage_limiter.py and is enforced inside the AI routes.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# The client outlives MongoDB outages, so driver errors can surface mid-request.
@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


# ─── Middleware ─────────────────────────────────────────────────────────────────
# The dashboard reads the quota headers, so they must be exposed cross-origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(ai_router)
app.include_router(admin_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "SEO Lens API",
        "version": API_VERSION,
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
