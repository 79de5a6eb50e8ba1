"""
Async engine & session factory.

The session store and user directory each open short transactions from
the factory built here; nothing holds a connection across requests.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from backoffice.core.config import Settings

# asyncpg surfaces an unreachable server as a bare OSError
# (ConnectionRefusedError, socket.gaierror), not as a SQLAlchemyError.
BACKEND_ERRORS = (SQLAlchemyError, OSError)


def build_engine(settings: Settings, **kwargs) -> AsyncEngine:
    return create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)
