from typing import Callable, Dict, Any, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from gmboard.config.settings import settings
from gmboard.domain.entities import ScoreWeights
from gmboard.infrastructure.repositories.sqlalchemy import (
    SQLAlchemyEventRepository,
    SQLAlchemyCursorRepository,
    SQLAlchemyProfileRepository
)
from gmboard.use_cases.aggregator import LeaderboardAggregator
from gmboard.use_cases.leaderboard import LeaderboardService
from gmboard.use_cases.profiles import ProfileService

class ServicesMiddleware(BaseMiddleware):
    """Opens a session per update and hands the read-side services to handlers."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        async with self.session_factory() as session:
            event_repo = SQLAlchemyEventRepository(session)
            aggregator = LeaderboardAggregator(
                event_repo,
                weights=ScoreWeights(
                    sent=settings.SCORE_SENT_WEIGHT,
                    streak=settings.SCORE_STREAK_WEIGHT,
                    received=settings.SCORE_RECEIVED_WEIGHT
                ),
                max_limit=settings.LEADERBOARD_MAX_LIMIT
            )
            profile_service = ProfileService(SQLAlchemyProfileRepository(session))

            data["session"] = session
            data["event_repo"] = event_repo
            data["cursor_repo"] = SQLAlchemyCursorRepository(session)
            data["profile_service"] = profile_service
            data["leaderboard_service"] = LeaderboardService(aggregator, profile_service)

            return await handler(event, data)
