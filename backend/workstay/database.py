from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings


class Database:
    """Owns the engine and session factory for the lifetime of the process."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.engine: AsyncEngine | None = None
        self.sessionmaker: async_sessionmaker[AsyncSession] | None = None

    def connect(self) -> None:
        if self.engine is not None:
            return
        self.engine = create_async_engine(
            self.settings.database_url,
            echo=self.settings.echo_sql,
            pool_pre_ping=True,
            pool_recycle=3600,
            pool_timeout=self.settings.storage_timeout_seconds,
        )
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    async def dispose(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.sessionmaker = None

    def session(self) -> AsyncSession:
        if self.sessionmaker is None:
            raise RuntimeError("database is not connected")
        return self.sessionmaker()
