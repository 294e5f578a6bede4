"""
Async SQLAlchemy engine and session factory helpers shared by the services.
"""
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def build_engine(database_url: str, echo: bool = False, **pool_options: Any) -> AsyncEngine:
    """Create an async engine; pooling options only apply to server databases."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return create_async_engine(database_url, echo=echo)

    pool_options.setdefault("pool_pre_ping", True)
    pool_options.setdefault("pool_recycle", 1800)
    return create_async_engine(database_url, echo=echo, **pool_options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )
