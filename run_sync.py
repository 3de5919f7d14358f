"""
One-shot sync: index up to the current chain head and exit.

Suitable for cron or manual catch-up; safe to run next to the long-running
process since runs are serialized by the cursor lease.
"""
import asyncio
import logging
import sys

from gmboard.config.settings import settings
from gmboard.infrastructure.database.db_helper import engine, session_factory
from gmboard.use_cases.indexer import GreetingIndexer
from main import build_source

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

async def run_once() -> bool:
    indexer = GreetingIndexer.from_settings(session_factory, build_source(), settings)
    try:
        report = await indexer.sync()
    finally:
        await engine.dispose()
    return report.ok

if __name__ == "__main__":
    sys.exit(0 if asyncio.run(run_once()) else 1)
