#!/usr/bin/env python3
"""
Health check for the indexer.
Returns exit code 0 if the cursor advanced recently, 1 otherwise.
"""
import sys
import asyncio
from datetime import datetime, timedelta, timezone

from gmboard.config.settings import settings
from gmboard.infrastructure.database.db_helper import engine, session_factory
from gmboard.infrastructure.repositories.sqlalchemy import SQLAlchemyCursorRepository

# A few missed polls are fine; the RPC may be rate limiting us
MAX_STALENESS = timedelta(seconds=max(settings.POLL_INTERVAL_SECONDS * 10, 600))

async def check_indexer_health(now: datetime = None) -> bool:
    """Check that the sync cursor exists and was touched within MAX_STALENESS"""
    try:
        async with session_factory() as session:
            cursor = await SQLAlchemyCursorRepository(session).get(settings.cursor_key)

        if cursor is None:
            print("ERROR: Sync cursor not found, indexer never ran")
            return False

        now = now or datetime.now(timezone.utc).replace(tzinfo=None)  # func.now() is naive UTC
        age = now - cursor.updated_at
        if age > MAX_STALENESS:
            print(f"ERROR: Cursor stuck at block {cursor.last_indexed_block} for {age}")
            return False

        print(f"OK: Cursor at block {cursor.last_indexed_block}, updated {age} ago")
        return True

    except Exception as e:
        print(f"ERROR: Health check failed: {e}")
        return False
    finally:
        await engine.dispose()

if __name__ == "__main__":
    result = asyncio.run(check_indexer_health())
    sys.exit(0 if result else 1)
