#!/usr/bin/env python3
"""
rate_limit_maintenance.py — Operate on the `rate_limits` collection from a shell.

Usage (from the repository root):
    python scripts/rate_limit_maintenance.py indexes     # ensure indexes (incl. TTL)
    python scripts/rate_limit_maintenance.py stats       # totals + per-service breakdown
    python scripts/rate_limit_maintenance.py cleanup     # delete rows past the TTL window
    python scripts/rate_limit_maintenance.py reset --user <id> [--ip <addr>]
    python scripts/rate_limit_maintenance.py emergency-reset --yes

Reads MONGO_URI / MONGO_DB_NAME and the AI_* limits from the environment or
.env, exactly like the API. Same code paths as the /api/v1/admin routes, for
when the API itself is down.
"""

import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from motor.motor_asyncio import AsyncIOMotorClient  # noqa: E402

from seolens.core.config import settings  # noqa: E402
from seolens.services.usage_cleanup import RateLimitCleanup  # noqa: E402
from seolens.services.usage_limiter import RateLimitConfig, UsageLimiter  # noqa: E402
from seolens.services.usage_store import UsageStore  # noqa: E402


async def run(args: argparse.Namespace) -> int:
    client = AsyncIOMotorClient(settings.mongo_uri, serverSelectionTimeoutMS=5000, tz_aware=True)
    db = client[settings.mongo_db_name]

    try:
        await client.admin.command("ping")
        print(f"Connected to MongoDB ({settings.mongo_db_name})")
    except Exception as exc:
        print(f"ERROR: Cannot connect to MongoDB: {exc}")
        return 1

    config = RateLimitConfig.from_settings(settings)
    cleanup = RateLimitCleanup(config, db_provider=lambda: db)

    try:
        if args.command == "indexes":
            await UsageStore(db).create_indexes()
            print("Indexes ensured.")

        elif args.command == "stats":
            stats = await cleanup.get_record_stats()
            print(f"Rows: {stats.total} total, {stats.today} today, {stats.expired} expired")
            if stats.cleanup_recommended:
                print("Cleanup recommended: the TTL index may not be running.")
            for item in await cleanup.get_service_breakdown():
                print(
                    f"  {item.service}: {item.total_requests} requests in {item.records} rows "
                    f"({item.unique_users} users, {item.unique_ips} IPs)"
                )

        elif args.command == "cleanup":
            print(f"Deleted {await cleanup.cleanup_expired_records()} expired rows.")

        elif args.command == "reset":
            limiter = UsageLimiter(config, db_provider=lambda: db)
            deleted = await limiter.reset_rate_limits(user_id=args.user, ip_address=args.ip)
            print(f"Deleted {deleted} rows for today.")

        elif args.command == "emergency-reset":
            if not args.yes:
                print("Refusing to delete every row without --yes")
                return 1
            print(f"Deleted {await cleanup.emergency_reset()} rows of {config.service_name}.")
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="SEO Lens AI usage maintenance")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("indexes", help="Create the rate_limits / ai_insights indexes")
    sub.add_parser("stats", help="Print collection statistics")
    sub.add_parser("cleanup", help="Delete rows older than RATE_LIMIT_TTL_HOURS")

    reset = sub.add_parser("reset", help="Clear today's rows for a user and/or IP")
    reset.add_argument("--user", help="User ID (sub claim)")
    reset.add_argument("--ip", help="Client IP address")

    emergency = sub.add_parser("emergency-reset", help="Delete every row of AI_SERVICE_NAME")
    emergency.add_argument("--yes", action="store_true", help="Confirm the deletion")

    args = parser.parse_args()
    if args.command == "reset" and not (args.user or args.ip):
        parser.error("reset needs --user and/or --ip")

    sys.exit(asyncio.run(run(args)))
