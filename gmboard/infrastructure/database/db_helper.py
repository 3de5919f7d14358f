from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase

from gmboard.config.settings import settings

class Base(DeclarativeBase):
    pass

def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )

engine = create_async_engine(
    url=settings.database_url,
    echo=False,
)

session_factory = make_session_factory(engine)

async def get_db_session() -> AsyncSession:
    async with session_factory() as session:
        yield session
