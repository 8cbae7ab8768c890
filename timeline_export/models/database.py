import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from timeline_export.config import get_settings
from timeline_export.models.base import Base

logger = logging.getLogger(__name__)


def create_engine_and_session(
    database_url: str | None = None,
    echo: bool | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the async engine and its session factory."""
    settings = get_settings()
    url = database_url or settings.database_url
    kwargs: dict = {
        "echo": settings.database_echo if echo is None else echo,
        "future": True,
    }
    if url.startswith("postgresql"):
        kwargs.update(
            pool_size=5,
            max_overflow=0,  # Queue instead of exceeding the connection limit
            pool_pre_ping=True,  # Check connection health before use
            pool_recycle=300,
            pool_timeout=30,
        )
    engine = create_async_engine(url, **kwargs)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine, session_maker


async def init_db(engine: AsyncEngine, max_retries: int = 5, retry_delay: float = 2) -> None:
    """Create tables, retrying while the database comes up."""
    for attempt in range(max_retries):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return
        except (OperationalError, OSError) as e:
            if attempt < max_retries - 1:
                logger.warning(
                    f"DB connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {retry_delay} seconds..."
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
