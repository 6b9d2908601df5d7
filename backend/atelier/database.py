from __future__ import annotations
"""Async engine, session factory and declarative base for the variant pipeline.

Production runs on MySQL 8 through asyncmy. A ``sqlite+aiosqlite`` URL in
DATABASE_URL_OVERRIDE is accepted for local runs and the test suite; on
SQLite the schema is created at startup instead of through Alembic.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from atelier.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _engine_kwargs(url: str) -> dict:
    if is_sqlite(url):
        # aiosqlite connections belong to the loop that opened them
        return {"poolclass": NullPool}
    return {
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "connect_args": {"connect_timeout": 30},
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_kwargs(settings.DATABASE_URL),
)

# Objects stay readable after commit; services hand them back to routers
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base; every table is utf8mb4 on MySQL."""

    __table_args__ = {
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_schema() -> None:
    """Create missing tables on SQLite; MySQL schemas come from Alembic."""
    if not is_sqlite(settings.DATABASE_URL):
        return
    import atelier.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("SQLite schema ensured at %s", settings.DATABASE_URL)


async def close_db() -> None:
    await engine.dispose()
