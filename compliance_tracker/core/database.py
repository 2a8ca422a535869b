"""Async engine, sessions and dialect helpers.

Request handlers share one session per request that commits when the
handler returns. The pipelines commit on their own at claim and send
boundaries, so a rollback at the end of a request never undoes a send
that already happened.
"""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any
import logging

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def create_engine_for_url(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async engine, upgrading plain postgresql:// URLs to asyncpg."""
    url = database_url.replace("postgresql://", "postgresql+asyncpg://")
    if url.startswith("postgresql+asyncpg://"):
        kwargs.setdefault("pool_size", settings.database_pool_size)
        kwargs.setdefault("max_overflow", settings.database_max_overflow)
        kwargs.setdefault("pool_pre_ping", True)  # Check connection health before use
        kwargs.setdefault("pool_recycle", 300)
    return create_async_engine(url, echo=settings.database_echo, **kwargs)


engine = create_engine_for_url(settings.database_url_async)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on any error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"Error during request, transaction rolled back: {e}")
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Same transaction handling as get_session, for scripts and jobs."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def upsert_statement(
    session: AsyncSession,
    model: Any,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
):
    """
    Build an INSERT ... ON CONFLICT DO UPDATE for the session's dialect.

    Every column in ``values`` that is not part of the conflict target is
    overwritten, so the last writer wins.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"Upsert is not supported on {dialect}")

    update_columns = {
        key: stmt.excluded[key] for key in values if key not in conflict_columns
    }
    return stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_=update_columns,
    )


async def init_db() -> None:
    """Create missing tables. Development only; production uses migrations."""
    from ..models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the shared engine's pool."""
    await engine.dispose()
