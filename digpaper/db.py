# digpaper/db.py
import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from digpaper.config import settings
from digpaper.models import Base

logger = logging.getLogger(__name__)

# Engine: aiosqlite by default, asyncpg when DATABASE_URL points at PostgreSQL
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
)

# expire_on_commit=False: routes serialize rows after commit
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models() -> None:
    """Create the projects and documents tables if missing. Deployed databases use alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Intake tables ready on %s", engine.url.render_as_string(hide_password=True))


async def drop_models() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def ping() -> bool:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


async def close_engine() -> None:
    """Dispose pooled connections; called on shutdown and between test event loops."""
    await engine.dispose()
    logger.info("Database engine disposed")


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for the intake and workflow routes; rolled back if the route raises."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
