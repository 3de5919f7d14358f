from typing import List, Dict, Optional

from gmboard.domain.entities import ProfileInfo
from gmboard.domain.exceptions import InvalidArgument
from gmboard.domain.interfaces import AbstractProfileLookup
from gmboard.domain.repositories import AbstractProfileRepository
from gmboard.infrastructure.database.models import UserProfile
from gmboard.utils.formatters import normalize_address

class ProfileService(AbstractProfileLookup):
    def __init__(self, profile_repo: AbstractProfileRepository):
        self.profile_repo = profile_repo

    @staticmethod
    def to_info(profile: UserProfile) -> ProfileInfo:
        return ProfileInfo(
            display_name=profile.username,
            social_handle=profile.twitter_username or profile.discord_username,
        )

    async def batch_lookup(self, addresses: List[str]) -> Dict[str, ProfileInfo]:
        wanted = sorted({normalize_address(a) for a in addresses})
        profiles = await self.profile_repo.get_by_addresses(wanted)
        return {p.address: self.to_info(p) for p in profiles}

    async def get_profile(self, address: str) -> Optional[UserProfile]:
        return await self.profile_repo.get_profile(normalize_address(address))

    async def update_profile(
        self,
        address: str,
        username: Optional[str] = None,
        twitter_username: Optional[str] = None,
        discord_username: Optional[str] = None,
        bio: Optional[str] = None
    ) -> UserProfile:
        return await self.profile_repo.upsert_profile(
            normalize_address(address),
            username=username,
            twitter_username=twitter_username,
            discord_username=discord_username,
            bio=bio
        )

    async def search_profiles(self, query: str, limit: int = 10) -> List[UserProfile]:
        query = (query or "").strip()
        if not query:
            raise InvalidArgument("Search query is required")
        return await self.profile_repo.search(query, limit)
