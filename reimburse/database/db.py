"""
Async database engine and session factory.

Every module that touches the database goes through ``async_db_session``:

    async with async_db_session() as session:          # read
        ...
    async with async_db_session.begin() as session:    # read-modify-write
        ...
"""

import logging

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from reimburse.core.conf import settings

logger = logging.getLogger(__name__)


def create_async_engine_and_session(url: str, echo: bool = False) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Build an engine and its session factory.

    Args:
        url: SQLAlchemy async URL (``postgresql+asyncpg://`` or ``sqlite+aiosqlite://``)
        echo: Log every statement

    Returns:
        (engine, session factory)
    """
    engine_kwargs = {'echo': echo, 'future': True}
    if not url.startswith('sqlite'):
        engine_kwargs.update(pool_size=10, max_overflow=20, pool_pre_ping=True, pool_recycle=3600)

    try:
        engine = create_async_engine(url, **engine_kwargs)
    except Exception as e:
        logger.error(f"[DB] Failed to create engine: {e}")
        raise

    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    return engine, session_factory


async_engine, async_db_session = create_async_engine_and_session(settings.DATABASE_URL, settings.DATABASE_ECHO)


async def create_tables(engine: AsyncEngine, metadata: MetaData) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
