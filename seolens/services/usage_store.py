"""
usage_store.py — MongoDB persistence for AI usage counters.

One document per (scope, scope_key, service, window_start):

    {
      "scope":           "user" | "ip",
      "scope_key":       "<user id or IP>",
      "service":         "ai_analysis",
      "window_start":    2026-10-19T00:00:00Z,   # UTC midnight of the day
      "request_count":   3,
      "last_request_at": 2026-10-19T14:02:11Z,
      "expires_at":      2026-10-20T01:00:00Z,   # TTL index deletes the row
      "user_id":         "<user id>" | null,
      "ip_address":      "<ip>"
    }

Rows are only ever created by increment_row() (an upsert with $inc), so the
unique index and the upsert together keep one row per key. Nothing here
decrements request_count; rows disappear through TTL, the cleanup sweep or
an explicit admin delete.

This module knows nothing about limits — see usage_limiter.py.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from seolens.models.usage import Scope, ServiceBreakdown, UsageRecord

logger = logging.getLogger(__name__)

RATE_LIMITS = "rate_limits"
AI_INSIGHTS = "ai_insights"


class StoreUnavailableError(RuntimeError):
    """Raised when there is no database connection to read or write usage."""


class UsageStore:
    """Thin async wrapper over the `rate_limits` and `ai_insights` collections."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def rows(self):
        return self._db[RATE_LIMITS]

    @property
    def insights(self):
        return self._db[AI_INSIGHTS]

    # ── Schema ────────────────────────────────────────────────────────────────

    async def create_indexes(self) -> None:
        """Idempotent index creation — safe to run on every startup."""
        await self.rows.create_index(
            [
                ("scope_key", ASCENDING),
                ("scope", ASCENDING),
                ("service", ASCENDING),
                ("window_start", ASCENDING),
            ],
            name="scope_service_window_unique",
            unique=True,
        )
        # Global aggregation: every row of a service for one day
        await self.rows.create_index(
            [("service", ASCENDING), ("window_start", ASCENDING)],
            name="service_window",
        )
        # expires_at already holds the deletion time
        await self.rows.create_index(
            [("expires_at", ASCENDING)],
            name="expires_at_ttl",
            expireAfterSeconds=0,
        )
        await self.insights.create_index(
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            name="user_created",
        )
        await self.insights.create_index([("created_at", DESCENDING)], name="created_desc")
        logger.info("Usage limiter indexes ensured")

    # ── Point lookups / writes ────────────────────────────────────────────────

    async def find_row(
        self, scope: Scope, scope_key: str, service: str, window_start: datetime
    ) -> Optional[UsageRecord]:
        doc = await self.rows.find_one(
            {
                "scope": scope,
                "scope_key": scope_key,
                "service": service,
                "window_start": window_start,
            }
        )
        if not doc:
            return None
        doc.pop("_id", None)
        return UsageRecord(**doc)

    async def increment_row(
        self,
        scope: Scope,
        scope_key: str,
        service: str,
        window_start: datetime,
        now: datetime,
        expires_at: datetime,
        set_fields: Optional[dict[str, Any]] = None,
        insert_fields: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Atomically add one request to a row, creating it on first use.

        set_fields are written on every increment; insert_fields only when
        the upsert creates the row. The two must not share keys.
        """
        await self.rows.update_one(
            {
                "scope": scope,
                "scope_key": scope_key,
                "service": service,
                "window_start": window_start,
            },
            {
                "$inc": {"request_count": 1},
                "$set": {"last_request_at": now, **(set_fields or {})},
                "$setOnInsert": {"expires_at": expires_at, **(insert_fields or {})},
            },
            upsert=True,
        )

    # ── Aggregations ──────────────────────────────────────────────────────────

    async def sum_requests(self, service: str, window_start: datetime) -> int:
        """Total request_count across every row of *service* for one day."""
        pipeline = [
            {"$match": {"service": service, "window_start": window_start}},
            {"$group": {"_id": None, "total_requests": {"$sum": "$request_count"}}},
        ]
        async for doc in self.rows.aggregate(pipeline):
            return int(doc.get("total_requests", 0))
        return 0

    async def daily_summary(self, service: str, window_start: datetime) -> dict[str, int]:
        """Requests plus distinct users and IPs for one service and day."""
        pipeline = [
            {"$match": {"service": service, "window_start": window_start}},
            {
                "$group": {
                    "_id": None,
                    "total_requests": {"$sum": "$request_count"},
                    "unique_users": {"$addToSet": "$user_id"},
                    "unique_ips": {"$addToSet": "$ip_address"},
                }
            },
        ]
        async for doc in self.rows.aggregate(pipeline):
            return {
                "requests": int(doc.get("total_requests", 0)),
                "unique_users": len([u for u in doc.get("unique_users", []) if u]),
                "unique_ips": len([ip for ip in doc.get("unique_ips", []) if ip]),
            }
        return {"requests": 0, "unique_users": 0, "unique_ips": 0}

    async def service_breakdown(self, window_start: datetime) -> list[ServiceBreakdown]:
        """Per-service totals for rows whose window started at or after *window_start*."""
        pipeline = [
            {"$match": {"window_start": {"$gte": window_start}}},
            {
                "$group": {
                    "_id": "$service",
                    "records": {"$sum": 1},
                    "total_requests": {"$sum": "$request_count"},
                    "unique_users": {"$addToSet": "$user_id"},
                    "unique_ips": {"$addToSet": "$ip_address"},
                }
            },
        ]
        breakdown = []
        async for doc in self.rows.aggregate(pipeline):
            breakdown.append(
                ServiceBreakdown(
                    service=str(doc["_id"]),
                    records=int(doc.get("records", 0)),
                    total_requests=int(doc.get("total_requests", 0)),
                    unique_users=len([u for u in doc.get("unique_users", []) if u]),
                    unique_ips=len([ip for ip in doc.get("unique_ips", []) if ip]),
                )
            )
        return breakdown

    async def count_rows(self, query: Optional[dict] = None) -> int:
        return await self.rows.count_documents(query or {})

    # ── Deletes ───────────────────────────────────────────────────────────────

    async def delete_window(
        self,
        service: str,
        window_start: datetime,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """
        Delete one day's rows for *service*.

        With user_id and/or ip_address only the matching user row and/or IP
        row go; with neither, every row of the day goes.
        """
        query: dict[str, Any] = {"service": service, "window_start": window_start}
        scopes = []
        if user_id:
            scopes.append({"scope": "user", "scope_key": user_id})
        if ip_address:
            scopes.append({"scope": "ip", "scope_key": ip_address})
        if scopes:
            query["$or"] = scopes

        result = await self.rows.delete_many(query)
        return result.deleted_count

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self.rows.delete_many({"window_start": {"$lt": cutoff}})
        return result.deleted_count

    async def delete_service(self, service: str) -> int:
        result = await self.rows.delete_many({"service": service})
        return result.deleted_count

    # ── Insights ──────────────────────────────────────────────────────────────

    async def insert_insight(self, doc: dict[str, Any]) -> None:
        await self.insights.insert_one(doc)

    async def count_insights_since(self, since: datetime) -> int:
        return await self.insights.count_documents({"created_at": {"$gte": since}})
