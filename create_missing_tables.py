import asyncio
import logging
from pathlib import Path

from gmboard.infrastructure.database.db_helper import engine, Base
from gmboard.infrastructure.database import models  # noqa: F401  registers the tables with Base

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

async def create_tables():
    logger.info("Ensuring all tables exist...")
    Path("data").mkdir(exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables checked and created if missing.")
    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(create_tables())
