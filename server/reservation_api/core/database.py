"""Database configuration and async session management."""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, StaticPool

from .config import settings


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine with bounded statement time.

    An in-memory SQLite database is shared through a single StaticPool
    connection; file-backed SQLite opens a connection per session and waits
    on file locks. PostgreSQL connections get a server-side statement timeout.
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            return create_async_engine(
                database_url,
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(
            database_url,
            echo=False,
            poolclass=NullPool,
            connect_args={"timeout": settings.storage_timeout_seconds},
        )

    timeout_ms = int(settings.storage_timeout_seconds * 1000)
    return create_async_engine(
        database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        connect_args={
            "command_timeout": settings.storage_timeout_seconds,
            "server_settings": {"statement_timeout": str(timeout_ms)},
        },
    )


# Create async engine
engine = build_engine(settings.database_url)

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize the database by creating all tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
