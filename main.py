import asyncio
import logging
import sys

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage

from gmboard.config.settings import settings
from gmboard.presentation.middlewares.error_handler import ErrorHandlingMiddleware
from gmboard.presentation.middlewares.services import ServicesMiddleware
from gmboard.presentation.handlers import leaderboard, profile, admin
from gmboard.infrastructure.chain.web3_source import Web3LogSource
from gmboard.infrastructure.database.db_helper import engine, session_factory
from gmboard.use_cases.backup import BackupService
from gmboard.use_cases.indexer import GreetingIndexer
from gmboard.use_cases.scheduler import IndexerSchedulerService

def build_source() -> Web3LogSource:
    return Web3LogSource(
        rpc_url=settings.RPC_URL,
        contract_address=settings.CONTRACT_ADDRESS,
        max_block_range=settings.WINDOW_SIZE,
        timeout=settings.RPC_TIMEOUT_SECONDS,
        max_retries=settings.RPC_MAX_RETRIES,
        backoff_base=settings.RPC_BACKOFF_BASE_SECONDS,
        backoff_max=settings.RPC_BACKOFF_MAX_SECONDS,
    )

async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    indexer = GreetingIndexer.from_settings(session_factory, build_source(), settings)
    scheduler_service = IndexerSchedulerService(indexer, interval_seconds=settings.POLL_INTERVAL_SECONDS)
    scheduler_service.start()

    try:
        if settings.BOT_TOKEN is None:
            logging.info("BOT_TOKEN not set, running the indexer only")
            await asyncio.Event().wait()
            return

        bot = Bot(token=settings.BOT_TOKEN.get_secret_value())
        dp = Dispatcher(storage=MemoryStorage())
        dp["scheduler_service"] = scheduler_service
        dp["backup_service"] = BackupService(session_factory)

        # Register Middlewares
        dp.update.outer_middleware(ErrorHandlingMiddleware())
        dp.update.middleware(ServicesMiddleware(session_factory))

        # Register Routers
        dp.include_router(leaderboard.router)
        dp.include_router(profile.router)
        dp.include_router(admin.router)

        logging.info("Starting bot...")
        await bot.delete_webhook(drop_pending_updates=True)
        await dp.start_polling(bot)
    finally:
        scheduler_service.shutdown()
        await engine.dispose()

if __name__ == "__main__":
    try:
        if sys.platform == "win32":
            asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logging.info("Stopped!")
