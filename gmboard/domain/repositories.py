from abc import ABC, abstractmethod
from typing import Optional, List, Iterable
from gmboard.domain.entities import GreetingEvent
from gmboard.infrastructure.database.models import SyncCursorRecord, UserProfile

class AbstractEventRepository(ABC):
    @abstractmethod
    async def upsert_many(self, events: Iterable[GreetingEvent]) -> int:
        """Insert events, ignoring ids that already exist. Returns the number of fresh rows."""
        pass

    @abstractmethod
    async def query_by_time_range(self, min_occurred_at: Optional[int]) -> List[GreetingEvent]:
        pass

    @abstractmethod
    async def query_by_actor(self, actor: str) -> List[GreetingEvent]:
        pass

    @abstractmethod
    async def latest_block_number(self, floor: int) -> int:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

class AbstractCursorRepository(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[SyncCursorRecord]:
        pass

    @abstractmethod
    async def get_or_create(self, key: str, floor: int) -> SyncCursorRecord:
        pass

    @abstractmethod
    async def compare_and_swap(self, key: str, expected_version: int, new_block: int) -> SyncCursorRecord:
        pass

    @abstractmethod
    async def acquire_lease(self, key: str, owner: str, ttl_seconds: int, now: int) -> bool:
        pass

    @abstractmethod
    async def release_lease(self, key: str, owner: str) -> None:
        pass

class AbstractProfileRepository(ABC):
    @abstractmethod
    async def get_by_addresses(self, addresses: List[str]) -> List[UserProfile]:
        pass

    @abstractmethod
    async def get_profile(self, address: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def upsert_profile(
        self,
        address: str,
        username: Optional[str] = None,
        twitter_username: Optional[str] = None,
        discord_username: Optional[str] = None,
        bio: Optional[str] = None
    ) -> UserProfile:
        pass

    @abstractmethod
    async def search(self, query: str, limit: int = 10) -> List[UserProfile]:
        """Case-insensitive substring match on username and social handles."""
        pass
