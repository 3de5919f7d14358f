from dataclasses import dataclass, field
from typing import Optional, Dict, Any

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class RawGreetingLog:
    """A decoded GM log as returned by the chain source."""
    actor: str
    recipient: str
    block_number: int
    log_index: int


@dataclass(frozen=True)
class GreetingEvent:
    id: str
    actor: str
    recipient: str
    block_number: int
    log_index: int
    occurred_at: int
    contract_last_seen: Optional[int] = None

    @staticmethod
    def make_id(block_number: int, log_index: int) -> str:
        return f"{block_number}-{log_index}"

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == ZERO_ADDRESS


@dataclass
class LeaderboardEntry:
    actor: str
    sent_count: int = 0
    received_count: int = 0
    streak_days: int = 0
    last_event_at: int = 0
    score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor": self.actor,
            "sentCount": self.sent_count,
            "receivedCount": self.received_count,
            "streakDays": self.streak_days,
            "lastEventAt": self.last_event_at,
            "score": self.score,
        }


@dataclass(frozen=True)
class ScoreWeights:
    sent: int = 10
    streak: int = 5
    received: int = 2


@dataclass(frozen=True)
class ProfileInfo:
    display_name: Optional[str] = None
    social_handle: Optional[str] = None


@dataclass
class SyncReport:
    cursor_before: Optional[int] = None
    cursor_after: Optional[int] = None
    target_height: Optional[int] = None
    windows_committed: int = 0
    events_seen: int = 0
    events_inserted: int = 0
    lease_acquired: bool = True
    cancelled: bool = False
    error: Optional[str] = None
    warnings: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.lease_acquired and self.error is None
