import logging
from typing import List, Dict, Any, Optional

from gmboard.domain.entities import ProfileInfo
from gmboard.domain.interfaces import AbstractProfileLookup
from gmboard.use_cases.aggregator import LeaderboardAggregator
from gmboard.utils.formatters import normalize_address

logger = logging.getLogger(__name__)

class LeaderboardService:
    def __init__(self, aggregator: LeaderboardAggregator, profile_lookup: Optional[AbstractProfileLookup] = None):
        self.aggregator = aggregator
        self.profile_lookup = profile_lookup

    async def _profiles(self, addresses: List[str]) -> Dict[str, ProfileInfo]:
        if not addresses or self.profile_lookup is None:
            return {}
        try:
            return await self.profile_lookup.batch_lookup(addresses)
        except Exception as e:
            # Profiles only decorate the ranking; never fail the read because of them
            logger.warning(f"Profile lookup failed for {len(addresses)} addresses: {e}")
            return {}

    async def get_leaderboard(self, timeframe: str, limit: int = 10) -> List[Dict[str, Any]]:
        entries = await self.aggregator.build_leaderboard(timeframe, limit)
        profiles = await self._profiles([e.actor for e in entries])

        rows = []
        for rank, entry in enumerate(entries, 1):
            profile = profiles.get(entry.actor, ProfileInfo())
            rows.append({
                "rank": rank,
                **entry.to_dict(),
                "displayName": profile.display_name,
                "socialHandle": profile.social_handle,
            })
        return rows

    async def get_actor_standing(self, address: str, timeframe: str = "allTime") -> Optional[Dict[str, Any]]:
        """Entry and 1-based rank of one actor, or None when it has no greetings in range."""
        actor = normalize_address(address)
        ranked = await self.aggregator.rank_all(timeframe)

        for rank, entry in enumerate(ranked, 1):
            if entry.actor == actor:
                profile = (await self._profiles([actor])).get(actor, ProfileInfo())
                return {
                    "rank": rank,
                    "total": len(ranked),
                    **entry.to_dict(),
                    "displayName": profile.display_name,
                    "socialHandle": profile.social_handle,
                }
        return None
