"""Async engine and session factory for the durable context store.

The context store sits on the hot path of every tool call, so the engine
carries a server-side statement timeout: a slow query fails fast and the
resilient store falls back to memory instead of stalling the chain.

See: migrations/versions/001_create_edit_context_tables.py
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def create_db_engine(
    url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 5,
    statement_timeout_s: float | None = None,
    echo: bool = False,
) -> AsyncEngine:
    """AsyncEngine on asyncpg; connections are opened lazily.

    Args:
        url: postgresql+asyncpg:// URL.
        statement_timeout_s: Per-statement deadline enforced by PostgreSQL.
    """
    connect_args: dict[str, object] = {}
    if statement_timeout_s is not None:
        connect_args["server_settings"] = {"statement_timeout": str(int(statement_timeout_s * 1000))}
    return create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # rows are converted to domain records after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
