"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
shared by the repositories of the agent core.
"""

from lakitu_ai.agent_core.repos.sql import create_all, create_engine, create_sessionmaker
from lakitu_ai.server.core.config import settings

"""
engine:
    The global SQLAlchemy AsyncEngine instance.
    Configured with the connection URL from settings; the URL is normalized to the
    asyncpg driver for PostgreSQL.
"""
engine = create_engine(settings.database_url)

"""
async_session_maker:
    A global factory for creating new AsyncSession instances.
    Bound to the `engine` and configured to NOT expire on commit (typical for async).
"""
async_session_maker = create_sessionmaker(engine)


async def init_db() -> None:
    """
    Initialize the database.

    Creates the checkpoint, step, subagent and sync-outbox tables when they do not exist.
    """
    await create_all(engine)
