"""
Database module for clipforge.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from clipforge.db.engine import async_session, build_engine, build_session_factory, engine, shutdown
from clipforge.db.models import Base, Clip, PipelineRun, Project

logger = logging.getLogger(__name__)


async def init_database(bind: AsyncEngine | None = None) -> None:
    """Create the schema if it does not exist yet."""
    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug(f"Database schema ready at {target.url}")


__all__ = [
    "Base",
    "Clip",
    "PipelineRun",
    "Project",
    "engine",
    "async_session",
    "build_engine",
    "build_session_factory",
    "shutdown",
    "init_database",
]
