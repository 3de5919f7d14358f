import asyncio
from typing import Dict, List, Optional, Set

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from gmboard.domain.entities import RawGreetingLog
from gmboard.domain.exceptions import DataConsistencyWarning, InvalidArgument, TransientSourceError
from gmboard.domain.interfaces import AbstractChainLogSource
from gmboard.infrastructure.database.db_helper import Base, make_session_factory
from gmboard.infrastructure.database import models  # noqa: F401

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
ZERO = "0x" + "00" * 20

DAY = 86400


class FakeChainSource(AbstractChainLogSource):
    """In-memory chain: logs, per-block timestamps and injectable failures."""

    def __init__(self, height: int, logs: List[RawGreetingLog] = None, max_block_range: int = 100):
        self.height = height
        self.logs = list(logs or [])
        self.max_block_range = max_block_range
        self.timestamps: Dict[int, Optional[int]] = {}
        self.last_seen: Dict[str, int] = {}
        self.fail_height = False
        self.fail_timestamp_blocks: Set[int] = set()
        self.fail_log_ranges: Set[int] = set()
        self.malformed_blocks: Set[int] = set()
        self.timestamp_delay = 0.0
        self.timestamps_in_flight = 0
        self.max_timestamps_in_flight = 0
        self.cancelled_timestamp_calls: List[int] = []
        self.timestamp_calls: List[int] = []
        self.log_calls: List[tuple] = []
        self.on_get_logs = None

    def add(self, actor: str, recipient: str, block_number: int, log_index: int = 0, ts: int = None):
        self.logs.append(RawGreetingLog(actor, recipient, block_number, log_index))
        if ts is not None:
            self.timestamps[block_number] = ts

    def timestamp_for(self, block_number: int) -> Optional[int]:
        if block_number in self.timestamps:
            return self.timestamps[block_number]
        return 1_700_000_000 + block_number * 12

    async def current_height(self) -> int:
        if self.fail_height:
            raise TransientSourceError("eth_blockNumber timed out")
        return self.height

    async def get_logs(self, event_signature: str, from_block: int, to_block: int, on_malformed=None) -> List[RawGreetingLog]:
        if to_block - from_block + 1 > self.max_block_range:
            raise InvalidArgument(f"range {from_block}-{to_block} too wide")
        self.log_calls.append((from_block, to_block))
        if self.on_get_logs is not None:
            self.on_get_logs(from_block, to_block)
        if from_block in self.fail_log_ranges:
            raise TransientSourceError(f"eth_getLogs {from_block}-{to_block} rate limited")
        logs = []
        for log in self.logs:
            if not from_block <= log.block_number <= to_block:
                continue
            if log.block_number in self.malformed_blocks:
                if on_malformed is not None:
                    on_malformed(DataConsistencyWarning(f"Skipping undecodable log at block {log.block_number}"))
                continue
            logs.append(log)
        return logs

    async def get_block_timestamp(self, block_number: int) -> Optional[int]:
        self.timestamp_calls.append(block_number)
        self.timestamps_in_flight += 1
        self.max_timestamps_in_flight = max(self.max_timestamps_in_flight, self.timestamps_in_flight)
        try:
            if block_number in self.fail_timestamp_blocks:
                raise TransientSourceError(f"eth_getBlockByNumber {block_number} timed out")
            await asyncio.sleep(self.timestamp_delay)
            return self.timestamp_for(block_number)
        except asyncio.CancelledError:
            self.cancelled_timestamp_calls.append(block_number)
            raise
        finally:
            self.timestamps_in_flight -= 1

    async def read_last_seen(self, address: str) -> Optional[int]:
        return self.last_seen.get(address.lower())


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session
