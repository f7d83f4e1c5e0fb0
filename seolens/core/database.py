"""
Motor connection lifecycle for the usage limiter.

The API owns one AsyncIOMotorClient for its whole life. main.py opens it in
the lifespan and closes it on shutdown; everything else reaches the database
through get_db(), which is None only before startup and after shutdown.

A failed startup ping does not drop the client: Motor keeps selecting a
server in the background, so each later operation succeeds or fails on its
own. While MongoDB is unreachable the limiter's checks fail and it applies
its fail policy; /health reports "disconnected". Index creation that could
not run at startup is retried by ensure_indexes() from the cleanup task.
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from seolens.core.config import settings

logger = logging.getLogger(__name__)

_CREDENTIALS = re.compile(r"://[^:/@]+:[^@]+@")


class DatabaseClient:
    """Connection state. Tests assign .client / .db directly."""

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None
    indexes_ready: bool = False


db_client = DatabaseClient()


def _redact_uri(uri: str) -> str:
    return _CREDENTIALS.sub("://<redacted>@", uri)


async def connect_to_mongo() -> None:
    """Open the client, ping it, then ensure the rate_limits indexes."""
    logger.info("Opening MongoDB client for %s", _redact_uri(settings.mongo_uri))
    client = AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=5000,
        tlsCAFile=certifi.where(),
        # window_start comparisons need aware UTC datetimes back from the driver
        tz_aware=True,
    )
    db_client.client = client
    db_client.db = client[settings.mongo_db_name]
    db_client.indexes_ready = False

    try:
        await client.admin.command("ping")
    except Exception as exc:
        logger.warning(
            "MongoDB ping failed (%s); usage checks fail until the server answers", exc
        )
        return

    logger.info("MongoDB ready (db: %s)", settings.mongo_db_name)
    await ensure_indexes()


async def ensure_indexes() -> bool:
    """Create the usage indexes once per connection. False if not done yet."""
    if db_client.db is None:
        return False
    if db_client.indexes_ready:
        return True

    from seolens.services.usage_store import UsageStore  # local import avoids circular

    try:
        await UsageStore(db_client.db).create_indexes()
    except Exception as exc:
        logger.warning("Usage indexes not created: %s", exc)
        return False
    db_client.indexes_ready = True
    return True


async def close_mongo_connection() -> None:
    if db_client.client is None:
        return
    db_client.client.close()
    db_client.client = db_client.db = None
    db_client.indexes_ready = False
    logger.info("MongoDB client closed")


def get_db() -> AsyncIOMotorDatabase | None:
    """FastAPI dependency and plain accessor; None while no client is open."""
    return db_client.db
