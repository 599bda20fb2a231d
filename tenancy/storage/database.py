# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Control-Plane Database — Async SQLAlchemy engine and session factory.

The control plane is the shared "master" database holding tenant records,
their credentials and every cross-tenant table the purge plan walks.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger("tenancy.database")


class Base(DeclarativeBase):
    """Declarative base for control-plane tables."""
    pass


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class ControlPlaneDatabase:
    """
    Owns the control-plane engine and session factory.

    Usage:
        db = ControlPlaneDatabase("postgresql+asyncpg://...")
        await db.init()              # verify connection
        async with db.session() as s: ...
        await db.close()             # dispose engine on shutdown

    SQLite URLs are accepted for local runs and tests; foreign keys are
    switched on for every connection so restrict semantics match PostgreSQL.
    """

    def __init__(self, database_url: str, pool_size: int = 10, max_overflow: int = 10) -> None:
        url = make_url(database_url)
        kwargs: Dict[str, Any] = {"echo": False}
        if url.get_backend_name() != "sqlite":
            kwargs.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **kwargs)
        if url.get_backend_name() == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def session(self) -> AsyncSession:
        """Create a new async session."""
        return self.session_factory()

    async def init(self) -> None:
        """Verify the control plane is reachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(
            "Control plane reachable at %s",
            self.url.render_as_string(hide_password=True),
        )

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Control plane ping failed: %s", e)
            return False

    async def create_all(self) -> None:
        """Create all control-plane tables from ORM metadata (dev/test use)."""
        import tenancy.storage.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        """Drop all control-plane tables (test cleanup only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        """Dispose the engine and release all connections."""
        logger.info("Closing control-plane connections...")
        await self.engine.dispose()
