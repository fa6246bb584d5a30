from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker, create_async_engine
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator
import logging

from pairchat.config import Config
from .database import Base


class BaseDatabaseManager:
    def __init__(self, config: Config):
        self.config = config
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self._logger = logging.getLogger(__name__)

    async def initialize(self):
        raise NotImplementedError()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        if not self.engine:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def create_tables(self):
        if not self.engine:
            await self.initialize()

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        if not self.engine:
            await self.initialize()

        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self):
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            self._logger.debug("Database engine disposed")


class DatabaseManager(BaseDatabaseManager):
    """
    Engine and session factory for either PostgreSQL (asyncpg) or SQLite (aiosqlite).

    Every connection is opened with ``config.db.timeout`` so that a stalled
    database surfaces as an error instead of hanging the event loop forever.
    """

    async def initialize(self):
        db = self.config.db
        if db.is_sqlite:
            if db.path and db.path != ":memory:":
                Path(db.path).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_async_engine(
                url=db.url,
                connect_args={"timeout": db.timeout},
                echo=False,
            )
        else:
            self.engine = create_async_engine(
                url=db.url,
                pool_size=30,
                max_overflow=20,
                pool_pre_ping=True,
                pool_timeout=db.timeout,
                pool_recycle=-1,
                connect_args={"timeout": db.timeout, "command_timeout": db.timeout},
                echo=False,
            )

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._logger.info("Database engine initialized (%s)", "sqlite" if db.is_sqlite else "postgresql")
