from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from aivis.core.config import settings

engine = create_async_engine(
    settings.postgres_url,
    echo=False,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def make_session_factory() -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create a fresh async engine + session factory.

    The module-level engine is bound to the API server's event loop and cannot
    be reused from a new loop (CLI runs, Celery workers). The caller disposes
    the returned engine before its loop closes.
    """
    fresh_engine = create_async_engine(
        settings.postgres_url,
        echo=settings.app_debug and settings.log_level.upper() == "DEBUG",
        pool_pre_ping=True,
    )
    return async_sessionmaker(fresh_engine, class_=AsyncSession, expire_on_commit=False), fresh_engine


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
