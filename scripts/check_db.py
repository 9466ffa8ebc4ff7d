#!/usr/bin/env python3
"""
Database connectivity check.

Connects with the configured DATABASE_URL, runs ``SELECT 1`` and exits
non-zero on failure.

Usage:
    python scripts/check_db.py
"""

import asyncio
import sys

from app.platform.config import settings
from app.platform.db.session import Database


async def main() -> int:
    database = Database(settings.DATABASE_URL)
    database.connect()
    try:
        result = await database.ping()
        print(f"DB query result: {result}")
        return 0
    except Exception as e:
        print(f"DB connection/test query failed: {type(e).__name__}: {e}")
        return 1
    finally:
        await database.disconnect()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
