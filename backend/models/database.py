"""
Database connection and session management.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from config import settings

Base = declarative_base()


def to_async_url(url: str) -> str:
    """Map a plain sqlite URL onto the aiosqlite driver."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given database URL.

    SQLite connections are switched to WAL so that workers polling the
    queue do not block API readers.
    """
    async_engine = create_async_engine(
        to_async_url(url),
        echo=echo,
        connect_args={
            "timeout": 30,  # Wait up to 30 seconds for locks
            "check_same_thread": False,
        },
    )

    @event.listens_for(async_engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return async_engine


def create_session_factory(async_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.database_url, echo=settings.debug)
async_session = create_session_factory(engine)


async def get_db():
    """Dependency for getting database sessions."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(target_engine: AsyncEngine = None):
    """Create all tables that do not exist yet."""
    # Import models here to ensure they are registered with Base metadata
    from models.user import User
    from models.call import Call
    from models.queue_job import QueueJob

    async with (target_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
