import asyncio
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from gmboard.domain.entities import GreetingEvent, RawGreetingLog, SyncReport
from gmboard.domain.exceptions import (
    CursorConflictError,
    DataConsistencyWarning,
    PersistenceError,
    TransientSourceError,
)
from gmboard.domain.interfaces import AbstractChainLogSource
from gmboard.infrastructure.repositories.sqlalchemy import SQLAlchemyCursorRepository, SQLAlchemyEventRepository

logger = logging.getLogger(__name__)


def plan_windows(start: int, end: int, window_size: int) -> List[Tuple[int, int]]:
    """Splits the inclusive range [start, end] into ascending windows of at most `window_size` blocks."""
    if window_size < 1:
        raise ValueError("window_size must be positive")
    windows = []
    from_block = start
    while from_block <= end:
        to_block = min(from_block + window_size - 1, end)
        windows.append((from_block, to_block))
        from_block = to_block + 1
    return windows


class GreetingIndexer:
    """
    Brings the event store up to the chain head, one window at a time.

    Each window is committed before the cursor moves past it, so a failed
    run leaves the cursor at the last fully stored window and the next run
    resumes there. Runs are single-flight per cursor key through a lease
    on the cursor row.
    """

    def __init__(
        self,
        session_factory,
        source: AbstractChainLogSource,
        cursor_key: str,
        event_signature: str,
        window_size: int = 100,
        cursor_floor: int = 0,
        timestamp_concurrency: int = 5,
        fetch_contract_last_seen: bool = True,
        lease_seconds: int = 300,
        clock: Callable[[], int] = lambda: int(time.time()),
        owner_id: Optional[str] = None
    ):
        self.session_factory = session_factory
        self.source = source
        self.cursor_key = cursor_key
        self.event_signature = event_signature
        self.window_size = window_size
        self.cursor_floor = cursor_floor
        self.timestamp_concurrency = max(timestamp_concurrency, 1)
        self.fetch_contract_last_seen = fetch_contract_last_seen
        self.lease_seconds = lease_seconds
        self.clock = clock
        self.owner_id = owner_id or f"indexer-{uuid.uuid4().hex[:12]}"

    @classmethod
    def from_settings(cls, session_factory, source: AbstractChainLogSource, settings) -> "GreetingIndexer":
        return cls(
            session_factory,
            source,
            cursor_key=settings.cursor_key,
            event_signature=settings.EVENT_SIGNATURE,
            window_size=settings.WINDOW_SIZE,
            cursor_floor=settings.CURSOR_FLOOR_BLOCK,
            timestamp_concurrency=settings.TIMESTAMP_CONCURRENCY,
            fetch_contract_last_seen=settings.FETCH_CONTRACT_LAST_SEEN,
            lease_seconds=settings.SYNC_LEASE_SECONDS,
        )

    async def sync(self, cancel_event: Optional[asyncio.Event] = None) -> SyncReport:
        report = SyncReport()

        async with self.session_factory() as session:
            cursor_repo = SQLAlchemyCursorRepository(session)
            event_repo = SQLAlchemyEventRepository(session)

            cursor = await cursor_repo.get_or_create(self.cursor_key, self.cursor_floor)
            report.cursor_before = report.cursor_after = cursor.last_indexed_block

            if not await cursor_repo.acquire_lease(self.cursor_key, self.owner_id, self.lease_seconds, self.clock()):
                logger.info(f"Sync for {self.cursor_key} is already running elsewhere, skipping")
                report.lease_acquired = False
                return report

            try:
                await self._run_windows(session, cursor_repo, event_repo, report, cancel_event)
            finally:
                try:
                    await cursor_repo.release_lease(self.cursor_key, self.owner_id)
                except SQLAlchemyError as e:
                    # The lease expires on its own; the next run picks it up after the TTL
                    logger.error(f"Failed to release sync lease for {self.cursor_key}: {e}")

        logger.info(
            f"Sync finished: cursor {report.cursor_before} -> {report.cursor_after} "
            f"(target {report.target_height}), {report.windows_committed} windows, "
            f"{report.events_inserted}/{report.events_seen} new events"
            + (f", error: {report.error}" if report.error else "")
        )
        return report

    async def _run_windows(self, session, cursor_repo, event_repo, report: SyncReport, cancel_event):
        cursor = await cursor_repo.get_or_create(self.cursor_key, self.cursor_floor)
        report.cursor_before = report.cursor_after = cursor.last_indexed_block
        start = cursor.last_indexed_block + 1

        try:
            end = await self.source.current_height()
        except TransientSourceError as e:
            logger.warning(f"Could not read chain height: {e}")
            report.error = str(e)
            return
        report.target_height = end

        if start > end:
            logger.info(f"No new blocks to index (cursor at {cursor.last_indexed_block}, head {end})")
            return

        windows = plan_windows(start, end, self.window_size)
        logger.info(f"Indexing blocks {start}-{end} in {len(windows)} windows of {self.window_size}")

        for from_block, to_block in windows:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Sync cancelled before window {from_block}-{to_block}")
                report.cancelled = True
                return

            try:
                events = await self._build_window(from_block, to_block, report)
            except TransientSourceError as e:
                logger.warning(f"Window {from_block}-{to_block} aborted, cursor stays at {cursor.last_indexed_block}: {e}")
                report.error = str(e)
                return

            try:
                inserted = await event_repo.upsert_many(events)
                cursor = await cursor_repo.compare_and_swap(self.cursor_key, cursor.version, to_block)
                renewed = await cursor_repo.acquire_lease(self.cursor_key, self.owner_id, self.lease_seconds, self.clock())
            except CursorConflictError as e:
                logger.error(f"Stopping sync: {e}")
                report.error = str(e)
                return
            except SQLAlchemyError as e:
                await session.rollback()
                error = PersistenceError(f"Could not commit window {from_block}-{to_block}: {e}")
                logger.error(str(error), exc_info=True)
                report.error = str(error)
                return

            report.windows_committed += 1
            report.events_seen += len(events)
            report.events_inserted += inserted
            report.cursor_after = cursor.last_indexed_block
            logger.info(
                f"Committed window {from_block}-{to_block}: {len(events)} events ({inserted} new), "
                f"{max(end - to_block, 0)} blocks behind head"
            )

            if not renewed:
                # Lease expired and another run took it over; leave the rest to that run
                report.error = f"Sync lease for {self.cursor_key} lost after window {from_block}-{to_block}"
                logger.warning(report.error)
                return

    async def _build_window(self, from_block: int, to_block: int, report: SyncReport) -> List[GreetingEvent]:
        logs = await self.source.get_logs(
            self.event_signature, from_block, to_block, on_malformed=report.warnings.append
        )
        if not logs:
            return []

        block_numbers = sorted({log.block_number for log in logs})
        timestamps = await self._resolve_timestamps(block_numbers, report)

        last_seen: Dict[str, Optional[int]] = {}
        if self.fetch_contract_last_seen:
            actors = sorted({log.actor.lower() for log in logs})
            last_seen = await self._read_last_seen(actors, report)

        events = [self._to_event(log, timestamps, last_seen) for log in logs]
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    async def _gather_bounded(self, keys, fetch):
        sem = asyncio.Semaphore(self.timestamp_concurrency)

        async def run(key):
            async with sem:
                return key, await fetch(key)

        tasks = [asyncio.ensure_future(run(key)) for key in keys]
        try:
            return dict(await asyncio.gather(*tasks))
        except BaseException:
            # One failure aborts the window; stop the sibling fetches too
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _resolve_timestamps(self, block_numbers: List[int], report: SyncReport) -> Dict[int, int]:
        # A TransientSourceError here aborts the whole window
        raw = await self._gather_bounded(block_numbers, self.source.get_block_timestamp)

        resolved = {}
        for block_number, ts in raw.items():
            if ts is None:
                now = self.clock()
                warning = DataConsistencyWarning(
                    f"No timestamp for block {block_number}, using wall clock {now}"
                )
                logger.warning(str(warning))
                report.warnings.append(warning)
                ts = now
            resolved[block_number] = int(ts)
        return resolved

    async def _read_last_seen(self, actors: List[str], report: SyncReport) -> Dict[str, Optional[int]]:
        async def read(actor):
            try:
                return await self.source.read_last_seen(actor)
            except TransientSourceError as e:
                warning = DataConsistencyWarning(f"lastGM({actor}) unavailable: {e}")
                logger.warning(str(warning))
                report.warnings.append(warning)
                return None

        return await self._gather_bounded(actors, read)

    @staticmethod
    def _to_event(log: RawGreetingLog, timestamps: Dict[int, int], last_seen: Dict[str, Optional[int]]) -> GreetingEvent:
        actor = log.actor.lower()
        return GreetingEvent(
            id=GreetingEvent.make_id(log.block_number, log.log_index),
            actor=actor,
            recipient=log.recipient.lower(),
            block_number=log.block_number,
            log_index=log.log_index,
            occurred_at=timestamps[log.block_number],
            contract_last_seen=last_seen.get(actor),
        )
