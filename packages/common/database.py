"""
Async database access for the engine

One DatabaseSessionManager per process (API, Celery task, script). Production
runs PostgreSQL through asyncpg; tests and local runs use SQLite through
aiosqlite. Units of work are `async with sessionmanager.session() as db:` and
commit when the block exits cleanly.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

logger = structlog.get_logger()

Base = declarative_base()

POSTGRES_POOL = {
    "pool_size": 20,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_recycle": 3600,
}


def async_database_url(database_url: str) -> str:
    """Plain postgresql:// URLs (DB_* settings, Alembic) get the asyncpg driver"""
    for prefix in ("postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return "postgresql+asyncpg://" + database_url[len(prefix):]
    return database_url


def engine_options(database_url: str, **overrides: Any) -> Dict[str, Any]:
    """Pool settings apply to PostgreSQL only; SQLite keeps SQLAlchemy's defaults"""
    options: Dict[str, Any] = {"echo": False}
    if not database_url.startswith("sqlite"):
        options.update(POSTGRES_POOL)
    options.update(overrides)
    return options


class DatabaseSessionManager:
    """Owns the engine and session factory for one event loop"""

    def __init__(self):
        self._engine = None
        self._sessionmaker = None
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._sessionmaker is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseSessionManager not initialized")
        return self._engine

    async def init(self, database_url: str, **engine_kwargs):
        """Create the engine once; later calls are no-ops"""
        if self.initialized:
            return

        async with self._init_lock:
            if self.initialized:
                return

            url = async_database_url(database_url)
            self._engine = create_async_engine(url, **engine_options(url, **engine_kwargs))
            # expire_on_commit=False: ORM rows returned from a unit of work stay readable
            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
            logger.info("database_engine_created", dialect=self._engine.dialect.name)

    async def create_all(self):
        """Create every table (tests and the seed script; deployments run Alembic)"""
        from packages.common import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Unit of work: commit on success, roll back on any exception or cancellation"""
        if not self.initialized:
            raise RuntimeError("DatabaseSessionManager not initialized")

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise


sessionmanager = DatabaseSessionManager()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency.

    The API lifespan initializes the manager; scripts that skip that step fall
    back to DATABASE_URL / DB_* from settings.
    """
    if not sessionmanager.initialized:
        from packages.common.config import settings

        await sessionmanager.init(settings.database_url)

    async with sessionmanager.session() as session:
        yield session
