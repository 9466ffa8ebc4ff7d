from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.platform.config import settings
from app.platform.db.base import Base
from app.platform.logger import get_logger

logger = get_logger("database")


class Database:
    """
    Owns the async engine and session factory for the credential store.

    Created once per process (see the lifespan in app.main), then handed to
    request handlers through get_db().
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.DATABASE_URL
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def connect(self) -> None:
        if self.engine is not None:
            return

        if self.url.startswith("sqlite"):
            engine_kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url:
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs = {
                "pool_pre_ping": True,
                "pool_recycle": 1800,
                "pool_size": 20,
                "max_overflow": 30,
                "pool_timeout": 30,
            }

        self.engine = create_async_engine(self.url, echo=False, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False, autoflush=False
        )
        logger.info(f"Database engine created for {self.engine.url.render_as_string()}")

    async def create_all(self) -> None:
        """Create tables directly from the models (local and test databases only)."""
        import app.features.auth.models  # noqa: F401  registers tables on Base.metadata

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self):
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT 1 AS result"))
            return result.scalar_one()

    async def disconnect(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.session_factory = None
        logger.info("Database engine disposed")

    async def session(self) -> AsyncIterator[AsyncSession]:
        if self.session_factory is None:
            raise RuntimeError("Database is not connected")
        async with self.session_factory() as session:
            yield session


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    database: Database = request.app.state.database
    async for session in database.session():
        yield session
