import logging
from typing import Optional, List, Iterable, Dict, Any
from sqlalchemy import select, update, func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from gmboard.domain.entities import GreetingEvent
from gmboard.domain.exceptions import CursorConflictError
from gmboard.domain.repositories import (
    AbstractEventRepository,
    AbstractCursorRepository,
    AbstractProfileRepository
)
from gmboard.infrastructure.database.models import GreetingEventRecord, SyncCursorRecord, UserProfile

logger = logging.getLogger(__name__)

# Keeps a multi-row INSERT under SQLite's bound-parameter limit
UPSERT_CHUNK_SIZE = 100

def _insert_for(session: AsyncSession):
    """Dialect-specific INSERT that supports ON CONFLICT DO NOTHING."""
    if session.bind.dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert

def _to_event(row: GreetingEventRecord) -> GreetingEvent:
    return GreetingEvent(
        id=row.id,
        actor=row.actor,
        recipient=row.recipient,
        block_number=row.block_number,
        log_index=row.log_index,
        occurred_at=row.occurred_at,
        contract_last_seen=row.contract_last_seen,
    )

class SQLAlchemyEventRepository(AbstractEventRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert_many(self, events: Iterable[GreetingEvent]) -> int:
        rows: Dict[str, Dict[str, Any]] = {}
        for event in events:
            if event.id in rows:
                logger.warning(f"Duplicate event id {event.id} in batch, keeping the first")
                continue
            rows[event.id] = {
                "id": event.id,
                "actor": event.actor.lower(),
                "recipient": event.recipient.lower(),
                "block_number": event.block_number,
                "log_index": event.log_index,
                "occurred_at": event.occurred_at,
                "contract_last_seen": event.contract_last_seen,
            }

        if not rows:
            await self.session.commit()
            return 0

        insert = _insert_for(self.session)
        values = list(rows.values())
        inserted = 0
        for i in range(0, len(values), UPSERT_CHUNK_SIZE):
            chunk = values[i:i + UPSERT_CHUNK_SIZE]
            stmt = insert(GreetingEventRecord).values(chunk).on_conflict_do_nothing(index_elements=["id"])
            result = await self.session.execute(stmt)
            inserted += max(result.rowcount, 0)

        await self.session.commit()
        return inserted

    async def query_by_time_range(self, min_occurred_at: Optional[int]) -> List[GreetingEvent]:
        stmt = select(GreetingEventRecord)
        if min_occurred_at is not None:
            stmt = stmt.where(GreetingEventRecord.occurred_at >= min_occurred_at)
        stmt = stmt.order_by(GreetingEventRecord.block_number.asc(), GreetingEventRecord.log_index.asc())
        result = await self.session.execute(stmt)
        return [_to_event(row) for row in result.scalars().all()]

    async def query_by_actor(self, actor: str) -> List[GreetingEvent]:
        actor = actor.lower()
        stmt = (
            select(GreetingEventRecord)
            .where(or_(GreetingEventRecord.actor == actor, GreetingEventRecord.recipient == actor))
            .order_by(GreetingEventRecord.block_number.asc(), GreetingEventRecord.log_index.asc())
        )
        result = await self.session.execute(stmt)
        return [_to_event(row) for row in result.scalars().all()]

    async def latest_block_number(self, floor: int) -> int:
        latest = await self.session.scalar(select(func.max(GreetingEventRecord.block_number)))
        if latest is None:
            return floor
        return max(latest, floor)

    async def count(self) -> int:
        return await self.session.scalar(select(func.count()).select_from(GreetingEventRecord))

class SQLAlchemyCursorRepository(AbstractCursorRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> Optional[SyncCursorRecord]:
        # populate_existing: another session may have moved the row since we last looked
        stmt = select(SyncCursorRecord).where(SyncCursorRecord.key == key).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, key: str, floor: int) -> SyncCursorRecord:
        insert = _insert_for(self.session)
        stmt = insert(SyncCursorRecord).values(
            key=key, last_indexed_block=floor, version=0
        ).on_conflict_do_nothing(index_elements=["key"])
        await self.session.execute(stmt)
        await self.session.commit()
        return await self.get(key)

    async def compare_and_swap(self, key: str, expected_version: int, new_block: int) -> SyncCursorRecord:
        stmt = (
            update(SyncCursorRecord)
            .where(
                SyncCursorRecord.key == key,
                SyncCursorRecord.version == expected_version,
                SyncCursorRecord.last_indexed_block <= new_block
            )
            .values(
                last_indexed_block=new_block,
                version=SyncCursorRecord.version + 1,
                updated_at=func.now()
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            await self.session.rollback()
            raise CursorConflictError(
                f"Cursor {key} moved away from version {expected_version}; refusing to set block {new_block}"
            )
        await self.session.commit()
        return await self.get(key)

    async def acquire_lease(self, key: str, owner: str, ttl_seconds: int, now: int) -> bool:
        stmt = (
            update(SyncCursorRecord)
            .where(
                SyncCursorRecord.key == key,
                or_(
                    SyncCursorRecord.lease_owner.is_(None),
                    SyncCursorRecord.lease_owner == owner,
                    SyncCursorRecord.lease_expires_at < now
                )
            )
            .values(lease_owner=owner, lease_expires_at=now + ttl_seconds)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def release_lease(self, key: str, owner: str) -> None:
        stmt = (
            update(SyncCursorRecord)
            .where(SyncCursorRecord.key == key, SyncCursorRecord.lease_owner == owner)
            .values(lease_owner=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()

class SQLAlchemyProfileRepository(AbstractProfileRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_addresses(self, addresses: List[str]) -> List[UserProfile]:
        if not addresses:
            return []
        stmt = select(UserProfile).where(UserProfile.address.in_([a.lower() for a in addresses]))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_profile(self, address: str) -> Optional[UserProfile]:
        stmt = select(UserProfile).where(UserProfile.address == address.lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_profile(
        self,
        address: str,
        username: Optional[str] = None,
        twitter_username: Optional[str] = None,
        discord_username: Optional[str] = None,
        bio: Optional[str] = None
    ) -> UserProfile:
        values = {}
        if username:
            values['username'] = username
        if twitter_username:
            values['twitter_username'] = twitter_username
        if discord_username:
            values['discord_username'] = discord_username
        if bio:
            values['bio'] = bio

        profile = await self.get_profile(address)
        if profile is None:
            profile = UserProfile(address=address.lower(), **values)
            self.session.add(profile)
        else:
            for k, v in values.items():
                setattr(profile, k, v)

        await self.session.commit()
        await self.session.refresh(profile)
        return profile

    async def search(self, query: str, limit: int = 10) -> List[UserProfile]:
        pattern = f"%{query}%"
        stmt = (
            select(UserProfile)
            .where(or_(
                UserProfile.username.ilike(pattern),
                UserProfile.twitter_username.ilike(pattern),
                UserProfile.discord_username.ilike(pattern)
            ))
            .order_by(UserProfile.address.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
