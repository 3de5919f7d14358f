from abc import ABC, abstractmethod
from typing import Callable, Optional, List, Dict
from gmboard.domain.entities import RawGreetingLog, ProfileInfo
from gmboard.domain.exceptions import DataConsistencyWarning

class AbstractChainLogSource(ABC):
    @abstractmethod
    async def current_height(self) -> int:
        pass

    @abstractmethod
    async def get_logs(
        self,
        event_signature: str,
        from_block: int,
        to_block: int,
        on_malformed: Optional[Callable[[DataConsistencyWarning], None]] = None
    ) -> List[RawGreetingLog]:
        """Decoded logs in the inclusive range. Undecodable logs are skipped and passed to `on_malformed`."""
        pass

    @abstractmethod
    async def get_block_timestamp(self, block_number: int) -> Optional[int]:
        """Block timestamp in unix seconds, or None when the node has no such block."""
        pass

    @abstractmethod
    async def read_last_seen(self, address: str) -> Optional[int]:
        pass

class AbstractProfileLookup(ABC):
    @abstractmethod
    async def batch_lookup(self, addresses: List[str]) -> Dict[str, ProfileInfo]:
        pass
