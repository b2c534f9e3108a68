"""Async database engine for the order history"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from signal_trader.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(database_url: str) -> AsyncEngine:
    sqlite = database_url.startswith("sqlite")
    return create_async_engine(
        database_url,
        echo=False,
        connect_args={"check_same_thread": False} if sqlite else {},
        pool_pre_ping=not sqlite,
    )


engine = make_engine(settings.database_url)

# autoflush off: OrderStore commits explicitly after each patch
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_db():
    """Create the orders table if it does not exist"""
    import signal_trader.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    await engine.dispose()
