import time
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional

from gmboard.domain.entities import GreetingEvent, LeaderboardEntry, ScoreWeights
from gmboard.domain.enums import Timeframe
from gmboard.domain.exceptions import InvalidArgument
from gmboard.domain.repositories import AbstractEventRepository
from gmboard.utils.formatters import day_index


def resolve_cutoff(timeframe: Timeframe, now: int) -> Optional[int]:
    """Lower bound (inclusive) on occurred_at, or None for all time."""
    window = timeframe.window_seconds
    if window is None:
        return None
    return now - window


def trailing_streak(day_indices: List[int]) -> int:
    """
    Length of the run of consecutive days ending at the last day.

    Expects sorted, de-duplicated UTC day indices.
    """
    if not day_indices:
        return 0
    streak = 1
    for prev, curr in zip(day_indices, day_indices[1:]):
        if curr - prev == 1:
            streak += 1
        elif curr - prev > 1:
            streak = 1
    return streak


def score_entry(entry: LeaderboardEntry, weights: ScoreWeights) -> int:
    return (
        entry.sent_count * weights.sent
        + entry.streak_days * weights.streak
        + entry.received_count * weights.received
    )


def rank_entries(entries: Iterable[LeaderboardEntry]) -> List[LeaderboardEntry]:
    return sorted(entries, key=lambda e: (-e.score, -e.sent_count, e.actor))


def aggregate_events(events: Iterable[GreetingEvent], weights: ScoreWeights) -> List[LeaderboardEntry]:
    """Per-actor stats over an already filtered event set, ranked."""
    entries: Dict[str, LeaderboardEntry] = {}
    days: Dict[str, set] = defaultdict(set)
    received: Dict[str, int] = defaultdict(int)

    for event in events:
        actor = event.actor.lower()
        entry = entries.get(actor)
        if entry is None:
            entry = entries[actor] = LeaderboardEntry(actor=actor)
        entry.sent_count += 1
        entry.last_event_at = max(entry.last_event_at, event.occurred_at)
        days[actor].add(day_index(event.occurred_at))
        if not event.is_broadcast:
            received[event.recipient.lower()] += 1

    for actor, entry in entries.items():
        entry.received_count = received.get(actor, 0)
        entry.streak_days = trailing_streak(sorted(days[actor]))
        entry.score = score_entry(entry, weights)

    return rank_entries(entries.values())


class LeaderboardAggregator:
    def __init__(
        self,
        event_repo: AbstractEventRepository,
        weights: ScoreWeights = ScoreWeights(),
        max_limit: int = 50,
        clock: Callable[[], int] = lambda: int(time.time())
    ):
        self.event_repo = event_repo
        self.weights = weights
        self.max_limit = max_limit
        self.clock = clock

    async def rank_all(self, timeframe) -> List[LeaderboardEntry]:
        timeframe = Timeframe.parse(timeframe)
        cutoff = resolve_cutoff(timeframe, self.clock())
        events = await self.event_repo.query_by_time_range(cutoff)
        return aggregate_events(events, self.weights)

    async def build_leaderboard(self, timeframe, limit: int) -> List[LeaderboardEntry]:
        timeframe = Timeframe.parse(timeframe)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidArgument(f"limit must be a positive integer, got {limit!r}")
        ranked = await self.rank_all(timeframe)
        return ranked[:min(limit, self.max_limit)]
