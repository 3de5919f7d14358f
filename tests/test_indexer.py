import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from gmboard.domain.entities import RawGreetingLog
from gmboard.domain.exceptions import DataConsistencyWarning
from gmboard.infrastructure.repositories.sqlalchemy import SQLAlchemyCursorRepository, SQLAlchemyEventRepository
from gmboard.use_cases.indexer import GreetingIndexer, plan_windows

from conftest import ALICE, BOB, CAROL, ZERO, FakeChainSource

KEY = "0xcontract"


def make_indexer(session_factory, source, window_size=10, **kwargs):
    kwargs.setdefault("clock", lambda: 1_800_000_000)
    return GreetingIndexer(
        session_factory,
        source,
        cursor_key=KEY,
        event_signature="GM(address,address)",
        window_size=window_size,
        cursor_floor=0,
        **kwargs
    )


async def stored_events(session_factory):
    async with session_factory() as session:
        return await SQLAlchemyEventRepository(session).query_by_time_range(None)


async def cursor_block(session_factory):
    async with session_factory() as session:
        cursor = await SQLAlchemyCursorRepository(session).get(KEY)
        return cursor.last_indexed_block


def synthetic_source(height=95, max_block_range=100):
    source = FakeChainSource(height=height, max_block_range=max_block_range)
    actors = [ALICE, BOB, CAROL]
    for block in range(1, height + 1, 4):
        for log_index in range(block % 3 + 1):
            source.add(actors[(block + log_index) % 3], actors[block % 3] if log_index else ZERO, block, log_index)
    return source


class TestPlanWindows:
    def test_splits_inclusive_range(self):
        assert plan_windows(1, 25, 10) == [(1, 10), (11, 20), (21, 25)]

    def test_single_block(self):
        assert plan_windows(7, 7, 100) == [(7, 7)]

    def test_empty_when_start_after_end(self):
        assert plan_windows(8, 7, 100) == []

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            plan_windows(1, 10, 0)


class TestSync:
    async def test_nothing_to_do_when_cursor_at_head(self, session_factory):
        source = FakeChainSource(height=0)
        report = await make_indexer(session_factory, source).sync()

        assert report.ok
        assert report.windows_committed == 0
        assert report.events_inserted == 0
        assert source.log_calls == []

    @pytest.mark.parametrize("window_size", [1, 3, 7, 10, 100])
    async def test_completeness_independent_of_window_size(self, session_factory, window_size):
        source = synthetic_source(max_block_range=window_size)
        report = await make_indexer(session_factory, source, window_size=window_size).sync()

        events = await stored_events(session_factory)
        assert report.ok
        assert sorted(e.id for e in events) == sorted(f"{l.block_number}-{l.log_index}" for l in source.logs)
        assert report.events_inserted == len(source.logs)
        assert await cursor_block(session_factory) == source.height
        assert all(to - frm + 1 <= window_size for frm, to in source.log_calls)

    async def test_windows_are_processed_in_ascending_order(self, session_factory):
        source = synthetic_source(height=35)
        await make_indexer(session_factory, source, window_size=10).sync()

        assert source.log_calls == [(1, 10), (11, 20), (21, 30), (31, 35)]

    async def test_second_run_is_idempotent(self, session_factory):
        source = synthetic_source()
        indexer = make_indexer(session_factory, source)
        await indexer.sync()
        before = await stored_events(session_factory)

        report = await indexer.sync()

        assert report.ok
        assert report.windows_committed == 0
        assert report.events_inserted == 0
        assert report.cursor_before == report.cursor_after == source.height
        assert await stored_events(session_factory) == before

    async def test_cursor_advances_through_empty_windows(self, session_factory):
        source = FakeChainSource(height=250)
        report = await make_indexer(session_factory, source, window_size=100).sync()

        assert report.windows_committed == 3
        assert report.cursor_after == 250
        assert await cursor_block(session_factory) == 250
        assert source.timestamp_calls == []

    async def test_new_blocks_resume_from_cursor(self, session_factory):
        source = synthetic_source(height=40)
        indexer = make_indexer(session_factory, source)
        await indexer.sync()

        source.height = 60
        source.add(ALICE, BOB, 55)
        source.log_calls.clear()
        report = await indexer.sync()

        assert report.cursor_before == 40
        assert report.cursor_after == 60
        assert source.log_calls == [(41, 50), (51, 60)]
        assert report.events_inserted == 1

    async def test_addresses_are_lowercased_at_write_time(self, session_factory):
        source = FakeChainSource(height=5)
        source.add(ALICE.upper().replace("0X", "0x"), BOB.upper().replace("0X", "0x"), 3)
        await make_indexer(session_factory, source).sync()

        [event] = await stored_events(session_factory)
        assert event.actor == ALICE
        assert event.recipient == BOB

    async def test_event_ids_are_deterministic(self, session_factory):
        source = FakeChainSource(height=5)
        source.add(ALICE, ZERO, 4, log_index=2)
        await make_indexer(session_factory, source).sync()

        [event] = await stored_events(session_factory)
        assert event.id == "4-2"
        assert event.is_broadcast

    async def test_timestamps_fetched_once_per_block(self, session_factory):
        source = FakeChainSource(height=10)
        for i in range(3):
            source.add(ALICE, BOB, 5, log_index=i, ts=1_000)
        source.add(BOB, ALICE, 6, log_index=0, ts=2_000)
        source.add(CAROL, ALICE, 6, log_index=1)

        await make_indexer(session_factory, source).sync()

        assert sorted(source.timestamp_calls) == [5, 6]
        events = await stored_events(session_factory)
        assert [e.occurred_at for e in events] == [1_000, 1_000, 1_000, 2_000, 2_000]

    async def test_contract_last_seen_is_read_per_actor(self, session_factory):
        source = FakeChainSource(height=10)
        source.add(ALICE, BOB, 2)
        source.add(ALICE, CAROL, 3)
        source.add(BOB, ALICE, 3, log_index=1)
        source.last_seen[ALICE] = 1_234

        await make_indexer(session_factory, source).sync()

        by_actor = {e.actor: e.contract_last_seen for e in await stored_events(session_factory)}
        assert by_actor == {ALICE: 1_234, BOB: None}

    async def test_contract_last_seen_can_be_disabled(self, session_factory):
        source = FakeChainSource(height=10)
        source.add(ALICE, BOB, 2)
        source.last_seen[ALICE] = 1_234

        await make_indexer(session_factory, source, fetch_contract_last_seen=False).sync()

        [event] = await stored_events(session_factory)
        assert event.contract_last_seen is None

    async def test_unresolved_timestamp_falls_back_to_clock(self, session_factory):
        source = FakeChainSource(height=10)
        source.add(ALICE, BOB, 7)
        source.timestamps[7] = None

        report = await make_indexer(session_factory, source, clock=lambda: 1_750_000_000).sync()

        [event] = await stored_events(session_factory)
        assert event.occurred_at == 1_750_000_000
        assert report.ok
        assert len(report.warnings) == 1
        assert isinstance(report.warnings[0], DataConsistencyWarning)


class TestPartialFailure:
    async def test_failed_window_keeps_prior_commits_and_resumes(self, session_factory):
        source = FakeChainSource(height=30)
        source.add(ALICE, BOB, 5)
        source.add(BOB, ALICE, 15)
        source.add(CAROL, ZERO, 25)
        source.fail_timestamp_blocks = {15}
        indexer = make_indexer(session_factory, source)

        first = await indexer.sync()

        assert not first.ok
        assert "15" in first.error
        assert first.cursor_after == 10
        assert await cursor_block(session_factory) == 10
        assert [e.id for e in await stored_events(session_factory)] == ["5-0"]

        source.fail_timestamp_blocks.clear()
        source.log_calls.clear()
        second = await indexer.sync()

        assert second.ok
        assert second.cursor_before == 10
        assert source.log_calls[0] == (11, 20)
        assert await cursor_block(session_factory) == 30
        assert [e.id for e in await stored_events(session_factory)] == ["5-0", "15-0", "25-0"]

    async def test_log_fetch_failure_leaves_cursor(self, session_factory):
        source = synthetic_source(height=30)
        source.fail_log_ranges = {21}

        report = await make_indexer(session_factory, source).sync()

        assert report.windows_committed == 2
        assert report.cursor_after == 20
        assert await cursor_block(session_factory) == 20

    async def test_height_failure_is_reported_not_raised(self, session_factory):
        source = synthetic_source(height=30)
        source.fail_height = True

        report = await make_indexer(session_factory, source).sync()

        assert report.error is not None
        assert report.windows_committed == 0
        assert await cursor_block(session_factory) == 0

    async def test_rerun_after_crash_ignores_already_stored_events(self, session_factory):
        source = synthetic_source(height=30)
        await make_indexer(session_factory, source).sync()

        # Simulate a crash between the event commit and the cursor update
        async with session_factory() as session:
            repo = SQLAlchemyCursorRepository(session)
            cursor = await repo.get(KEY)
            cursor.last_indexed_block = 20
            await session.commit()

        report = await make_indexer(session_factory, source).sync()

        assert report.ok
        assert report.events_seen > 0
        assert report.events_inserted == 0
        assert len(await stored_events(session_factory)) == len(source.logs)

    async def test_commit_failure_rolls_back_and_keeps_cursor(self, session_factory, monkeypatch):
        source = synthetic_source(height=30)
        upsert = SQLAlchemyEventRepository.upsert_many

        async def failing_upsert(repo, events):
            if events and events[0].block_number > 10:
                raise OperationalError("INSERT INTO greeting_events", {}, Exception("disk I/O error"))
            return await upsert(repo, events)

        monkeypatch.setattr(SQLAlchemyEventRepository, "upsert_many", failing_upsert)

        report = await make_indexer(session_factory, source).sync()

        assert report.error.startswith("Could not commit window 11-20")
        assert report.windows_committed == 1
        assert report.cursor_after == 10
        assert await cursor_block(session_factory) == 10
        async with session_factory() as session:
            assert (await SQLAlchemyCursorRepository(session).get(KEY)).lease_owner is None

    async def test_malformed_log_is_skipped_with_warning(self, session_factory):
        source = FakeChainSource(height=20)
        source.add(ALICE, BOB, 3)
        source.add(BOB, ALICE, 5)
        source.malformed_blocks = {3}

        report = await make_indexer(session_factory, source).sync()

        assert report.ok
        assert report.cursor_after == 20
        assert [e.id for e in await stored_events(session_factory)] == ["5-0"]
        assert len(report.warnings) == 1
        assert isinstance(report.warnings[0], DataConsistencyWarning)

    async def test_failed_timestamp_cancels_sibling_fetches(self, session_factory):
        source = FakeChainSource(height=10)
        for block in range(1, 6):
            source.add(ALICE, BOB, block)
        source.fail_timestamp_blocks = {2}
        source.timestamp_delay = 5

        report = await make_indexer(session_factory, source, timestamp_concurrency=5).sync()

        assert "eth_getBlockByNumber 2" in report.error
        assert sorted(source.cancelled_timestamp_calls) == [1, 3, 4, 5]
        assert source.timestamps_in_flight == 0


class TestConcurrency:
    async def test_live_lease_blocks_second_indexer(self, session_factory):
        source = synthetic_source(height=30)
        async with session_factory() as session:
            repo = SQLAlchemyCursorRepository(session)
            await repo.get_or_create(KEY, 0)
            assert await repo.acquire_lease(KEY, "someone-else", 300, 1_800_000_000)

        report = await make_indexer(session_factory, source).sync()

        assert not report.lease_acquired
        assert not report.ok
        assert source.log_calls == []
        assert await cursor_block(session_factory) == 0

    async def test_expired_lease_is_taken_over(self, session_factory):
        source = synthetic_source(height=30)
        async with session_factory() as session:
            repo = SQLAlchemyCursorRepository(session)
            await repo.get_or_create(KEY, 0)
            await repo.acquire_lease(KEY, "crashed-run", 300, 1_700_000_000)

        report = await make_indexer(session_factory, source, clock=lambda: 1_800_000_000).sync()

        assert report.ok
        assert report.cursor_after == 30

    async def test_lease_released_after_run(self, session_factory):
        source = synthetic_source(height=30)
        await make_indexer(session_factory, source).sync()

        async with session_factory() as session:
            cursor = await SQLAlchemyCursorRepository(session).get(KEY)
            assert cursor.lease_owner is None

    async def test_cancel_is_honoured_between_windows(self, session_factory):
        source = synthetic_source(height=30)
        cancel = asyncio.Event()
        source.on_get_logs = lambda frm, to: cancel.set()

        report = await make_indexer(session_factory, source).sync(cancel_event=cancel)

        assert report.cancelled
        assert report.windows_committed == 1
        assert report.cursor_after == 10
        assert await cursor_block(session_factory) == 10

    async def test_cursor_moved_by_another_writer_stops_sync(self, session_factory):
        source = StealingSource(session_factory, at_block=11, height=30)
        source.steal = self.move_cursor

        report = await make_indexer(session_factory, source).sync()

        assert "moved away from version" in report.error
        assert report.windows_committed == 1
        assert report.cursor_after == 10
        assert await cursor_block(session_factory) == 15
        async with session_factory() as session:
            assert (await SQLAlchemyCursorRepository(session).get(KEY)).lease_owner is None

    async def test_lost_lease_stops_after_current_window(self, session_factory):
        source = StealingSource(session_factory, at_block=11, height=30)
        source.steal = self.take_lease

        report = await make_indexer(session_factory, source).sync()

        assert "lease" in report.error
        assert report.windows_committed == 2
        assert await cursor_block(session_factory) == 20
        assert (21, 30) not in source.log_calls
        async with session_factory() as session:
            assert (await SQLAlchemyCursorRepository(session).get(KEY)).lease_owner == "other-run"

    async def test_timestamp_fetches_respect_concurrency_limit(self, session_factory):
        source = FakeChainSource(height=20)
        for block in range(1, 11):
            source.add(ALICE, BOB, block)
        source.timestamp_delay = 0.01

        report = await make_indexer(session_factory, source, timestamp_concurrency=3).sync()

        assert report.ok
        assert len(source.timestamp_calls) == 10
        assert source.max_timestamps_in_flight == 3

    @staticmethod
    async def move_cursor(repo):
        cursor = await repo.get(KEY)
        await repo.compare_and_swap(KEY, cursor.version, 15)

    @staticmethod
    async def take_lease(repo):
        # The indexer's lease runs until 1_800_000_300
        assert await repo.acquire_lease(KEY, "other-run", 300, 1_900_000_000)


def test_raw_log_is_hashable():
    # Used as dedupe keys by callers
    assert len({RawGreetingLog(ALICE, BOB, 1, 0), RawGreetingLog(ALICE, BOB, 1, 0)}) == 1


class StealingSource(FakeChainSource):
    """Lets another writer touch the cursor row while a given window is being fetched."""

    def __init__(self, session_factory, at_block, **kwargs):
        super().__init__(**kwargs)
        self.session_factory = session_factory
        self.at_block = at_block
        self.steal = None

    async def get_logs(self, event_signature, from_block, to_block, on_malformed=None):
        if from_block == self.at_block and self.steal is not None:
            async with self.session_factory() as session:
                await self.steal(SQLAlchemyCursorRepository(session))
        return await super().get_logs(event_signature, from_block, to_block, on_malformed)
