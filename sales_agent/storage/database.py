"""Async engine and session factory construction."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from sales_agent.config import settings
from sales_agent.storage.models import Base

logger = logging.getLogger(__name__)


def create_engine(url: Optional[str] = None, **kwargs) -> AsyncEngine:
    """Create the async engine, defaulting to the configured database URL."""
    kwargs.setdefault("echo", settings.storage.echo_sql)
    return create_async_engine(url or settings.storage.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))
