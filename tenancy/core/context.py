# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Platform Context — Singleton that holds all tenancy component references.

Initialized at startup, injected into API routes via FastAPI Depends, and
shut down exactly once at process exit.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis

from tenancy.core.config import TenancySettings
from tenancy.core.secrets import CredentialCipher
from tenancy.core.tenant import RequestContext
from tenancy.kernel.lifecycle import TenantLifecycleService
from tenancy.kernel.pool_cache import TenantConnectionCache
from tenancy.kernel.provisioner import TenantProvisioner
from tenancy.kernel.resolver import TenantContextResolver
from tenancy.kernel.schema_applier import (
    CommandSchemaApplier,
    SchemaApplierChain,
    SqlScriptSchemaApplier,
)
from tenancy.resilience.lock import LifecycleLock
from tenancy.storage.credentials import CredentialStore
from tenancy.storage.database import ControlPlaneDatabase

logger = logging.getLogger("tenancy.context")


class PlatformContext:
    """
    Holds all runtime references for the service.
    Created once at startup, used by all API handlers.
    """

    def __init__(
        self,
        settings: TenancySettings,
        redis: Optional[aioredis.Redis] = None,
        db: Optional[ControlPlaneDatabase] = None,
        provisioner: Optional[TenantProvisioner] = None,
    ) -> None:
        self.settings = settings
        self.redis = redis
        self.db = db or ControlPlaneDatabase(settings.CONTROL_PLANE_DATABASE_URL)
        self.credentials = CredentialStore(self.db, CredentialCipher(settings.CREDENTIAL_ENCRYPTION_KEY))
        self.cache = TenantConnectionCache(
            pool_size=settings.TENANT_POOL_SIZE,
            max_overflow=settings.TENANT_MAX_OVERFLOW,
            connect_timeout=settings.CONNECT_TIMEOUT,
            ssl=settings.DB_SSL,
        )
        self.schema = SchemaApplierChain([
            CommandSchemaApplier(settings.SCHEMA_PUSH_COMMAND, timeout=settings.SCHEMA_PUSH_TIMEOUT),
            SqlScriptSchemaApplier(settings.SCHEMA_SQL_PATH),
        ])
        self.provisioner = provisioner or TenantProvisioner(
            settings, self.credentials, self.cache, self.schema,
        )
        lock = LifecycleLock(redis, ttl=settings.LIFECYCLE_LOCK_TTL) if redis is not None else None
        self.lifecycle = TenantLifecycleService(self.db, self.provisioner, self.credentials, lock=lock)
        self._closed = False

    def resolver(self, request_context: RequestContext) -> TenantContextResolver:
        """A fresh resolver for one request."""
        return TenantContextResolver(
            request_context, self.db.engine, self.credentials, self.cache, self.settings,
        )

    async def startup(self) -> None:
        await self.db.init()
        await self.credentials.ensure_initialized()

    async def shutdown(self) -> None:
        """Dispose every pool. Later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        await self.cache.disconnect_all()
        await self.provisioner.close()
        await self.db.close()
        logger.info("Platform context shut down")


# ── Global singleton ────────────────────────────────────────

_ctx: Optional[PlatformContext] = None


def init_platform_context(
    settings: TenancySettings,
    redis: Optional[aioredis.Redis] = None,
    db: Optional[ControlPlaneDatabase] = None,
    provisioner: Optional[TenantProvisioner] = None,
) -> PlatformContext:
    global _ctx
    _ctx = PlatformContext(settings, redis=redis, db=db, provisioner=provisioner)
    return _ctx


def get_platform_context() -> PlatformContext:
    if _ctx is None:
        raise RuntimeError("PlatformContext not initialized. Call init_platform_context() first.")
    return _ctx
