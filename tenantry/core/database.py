"""
Database engine and session management.

One AsyncSession per request; its transaction commits when the handler
returns and rolls back when anything raises, so multi-row writes made in a
single request are committed together or not at all.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from tenantry.core.config import get_settings

settings = get_settings()


def engine_options(url: str) -> dict[str, Any]:
    """Pool settings per backend. SQLite (tests, local runs) keeps the defaults."""
    if url.startswith("sqlite"):
        return {}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **engine_options(settings.database_url),
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create all tables. Used for local development only."""
    import tenantry.models  # noqa: F401  registers tables on the metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engine() -> None:
    await engine.dispose()


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """A session with its own transaction, for workers and scripts."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: the request's session and transaction."""
    async with get_session_context() as session:
        yield session


async def check_database(session: AsyncSession) -> bool:
    """Round-trip a trivial query; used by the readiness probe."""
    result = await session.execute(text("SELECT 1"))
    return result.scalar_one() == 1
