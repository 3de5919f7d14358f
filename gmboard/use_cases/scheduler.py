import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gmboard.domain.entities import SyncReport
from gmboard.use_cases.indexer import GreetingIndexer

logger = logging.getLogger(__name__)

class IndexerSchedulerService:
    def __init__(self, indexer: GreetingIndexer, interval_seconds: int = 60):
        self.indexer = indexer
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.cancel_event = asyncio.Event()
        self.last_report: Optional[SyncReport] = None
        self.last_run_at: Optional[datetime] = None

    async def run_sync(self) -> Optional[SyncReport]:
        """One polling tick: index whatever the chain has produced since the cursor"""
        if self.cancel_event.is_set():
            return None
        try:
            report = await self.indexer.sync(cancel_event=self.cancel_event)
        except Exception as e:
            # Keep polling; the next tick resumes from the committed cursor
            logger.error(f"Error in run_sync: {e}", exc_info=True)
            return None

        self.last_report = report
        self.last_run_at = datetime.now(timezone.utc)
        return report

    def start(self):
        """Start the scheduler; the first sync runs immediately"""
        logger.info(f"Starting indexer scheduler (every {self.interval_seconds}s, cursor {self.indexer.cursor_key})")

        self.scheduler.add_job(
            self.run_sync,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id='greeting_index_sync',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc)
        )
        self.scheduler.start()
        logger.info("Indexer scheduler started")

    def shutdown(self):
        """Stop scheduling and ask a running sync to stop at the next window boundary"""
        self.cancel_event.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Indexer scheduler shut down")
