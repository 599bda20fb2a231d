# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenant Connection Cache — one pooled AsyncEngine per tenant, created lazily.

The map is the only mutable state shared by concurrent requests. Creation
goes through an asyncio.Lock with a second lookup inside it, so N callers
racing on a cold tenant all get the same engine. Entries live until
``evict`` or ``disconnect_all``; there is no TTL.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tenancy.core.metrics import platform_metrics

logger = logging.getLogger("tenancy.pool_cache")

EngineFactory = Callable[[URL], AsyncEngine]


class TenantConnectionCache:
    """Process-wide tenant id -> AsyncEngine map."""

    def __init__(
        self,
        pool_size: int = 5,
        max_overflow: int = 5,
        connect_timeout: float = 5.0,
        ssl: bool = False,
        engine_factory: Optional[EngineFactory] = None,
    ) -> None:
        self._engines: Dict[str, AsyncEngine] = {}
        self._lock = asyncio.Lock()
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._connect_timeout = connect_timeout
        self._ssl = ssl
        self._engine_factory = engine_factory or self._default_factory

    def _default_factory(self, url: URL) -> AsyncEngine:
        connect_args = {}
        if url.get_driver_name() == "asyncpg":
            connect_args["timeout"] = self._connect_timeout
            if self._ssl:
                connect_args["ssl"] = "require"
        return create_async_engine(
            url,
            pool_size=self._pool_size,
            max_overflow=self._max_overflow,
            pool_pre_ping=True,
            connect_args=connect_args,
            echo=False,
        )

    async def get_or_create(self, tenant_id: str, url: URL) -> AsyncEngine:
        """Return the cached engine for ``tenant_id``, building it on first access."""
        engine = self._engines.get(tenant_id)
        if engine is not None:
            return engine

        async with self._lock:
            engine = self._engines.get(tenant_id)
            if engine is not None:
                return engine
            engine = self._engine_factory(url)
            self._engines[tenant_id] = engine
            platform_metrics.set_gauge("tenant_pools", len(self._engines))

        logger.info(
            "Created pool for tenant %s -> %s",
            tenant_id, url.render_as_string(hide_password=True),
        )
        return engine

    def get(self, tenant_id: str) -> Optional[AsyncEngine]:
        return self._engines.get(tenant_id)

    async def evict(self, tenant_id: str) -> bool:
        """Dispose and forget one tenant's engine. Returns False if none was cached."""
        async with self._lock:
            engine = self._engines.pop(tenant_id, None)
            platform_metrics.set_gauge("tenant_pools", len(self._engines))
        if engine is None:
            return False
        await engine.dispose()
        logger.info("Evicted pool for tenant %s", tenant_id)
        return True

    async def disconnect_all(self) -> None:
        """Dispose every cached engine and clear the map (shutdown only)."""
        async with self._lock:
            engines = list(self._engines.items())
            self._engines.clear()
            platform_metrics.set_gauge("tenant_pools", 0)

        for tenant_id, engine in engines:
            try:
                await engine.dispose()
            except Exception as e:
                logger.error("Failed to dispose pool for tenant %s: %s", tenant_id, e)
        logger.info("Disconnected %d tenant pool(s)", len(engines))

    def tenant_ids(self) -> List[str]:
        return list(self._engines)

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._engines
