from datetime import datetime
from typing import Optional
from sqlalchemy import BigInteger, String, Integer, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.ext.asyncio import AsyncAttrs

from gmboard.infrastructure.database.db_helper import Base

class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

class GreetingEventRecord(Base, AsyncAttrs, TimestampMixin):
    __tablename__ = "greeting_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # "{block_number}-{log_index}"
    actor: Mapped[str] = mapped_column(String, index=True)  # lower-cased
    recipient: Mapped[str] = mapped_column(String, index=True)  # lower-cased, zero address = broadcast
    block_number: Mapped[int] = mapped_column(BigInteger, index=True)
    log_index: Mapped[int] = mapped_column(Integer)
    occurred_at: Mapped[int] = mapped_column(BigInteger, index=True)  # unix seconds
    contract_last_seen: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("ix_greeting_events_block_log", "block_number", "log_index"),
    )

class SyncCursorRecord(Base, AsyncAttrs, TimestampMixin):
    __tablename__ = "sync_cursors"

    key: Mapped[str] = mapped_column(String, primary_key=True)  # watched contract address
    last_indexed_block: Mapped[int] = mapped_column(BigInteger)
    version: Mapped[int] = mapped_column(Integer, default=0)

    lease_owner: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    lease_expires_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

class UserProfile(Base, AsyncAttrs, TimestampMixin):
    __tablename__ = "profiles"

    address: Mapped[str] = mapped_column(String, primary_key=True)  # lower-cased
    username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    twitter_username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    discord_username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(String, nullable=True)
