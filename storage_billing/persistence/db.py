from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from storage_billing.core.conf import settings


def create_async_engine_and_session(url: str) -> tuple[AsyncEngine, async_sessionmaker]:
    """
    Create the async engine and session factory.

    :param url: Database URL (postgresql+asyncpg://...)
    :return:
    """
    engine = create_async_engine(
        url,
        echo=settings.DATABASE_ECHO,
        pool_size=settings.DATABASE_POOL_SIZE,
        pool_pre_ping=True,
        future=True,
    )
    db_session = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, db_session


@lru_cache
def get_session_factory() -> async_sessionmaker:
    """Session factory bound to DATABASE_URL, created on first use."""
    _, db_session = create_async_engine_and_session(settings.DATABASE_URL)
    return db_session
