"""Database base and session setup."""
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

import config


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


engine = create_async_engine(
    config.DATABASE_URL,
    echo=False,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db(bind=None) -> None:
    """Create all tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
