"""Database connection and session management."""
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storefront_checkout.config import Settings
from storefront_checkout.database.models import Base


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine described by settings.

    Pool sizing only applies to server databases; SQLite uses its own pool.
    """
    kwargs: dict[str, Any] = {"echo": settings.database_echo}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    return create_async_engine(settings.database_url, **kwargs)


class Database:
    """
    Owns one engine and its session factory.

    Constructed once by the application factory (or a worker) and handed to
    request handlers explicitly; nothing here is module-global.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(build_engine(settings))

    def session(self) -> AsyncSession:
        """Open a new session; callers use it as an async context manager."""
        return self.session_factory()

    async def create_all(self) -> None:
        """
        Initialize database tables.

        Creates all tables defined in models if they don't exist.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close database connections and dispose of the engine."""
        await self.engine.dispose()


