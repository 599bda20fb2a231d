# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenant Context Resolver — picks the database a single request should use.

Built fresh for every request; never cached. The control plane is chosen
when any of these hold:
  - the path starts with a reserved administrative prefix
  - the route forced it
  - the caller has no tenant
Otherwise the caller's tenant engine is returned, falling back to the
control plane (and logging) when credentials or the connection are not
available.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine

from tenancy.core.config import TenancySettings
from tenancy.core.metrics import platform_metrics
from tenancy.core.tenant import RequestContext
from tenancy.kernel.pool_cache import TenantConnectionCache
from tenancy.storage.credentials import CredentialStore, build_tenant_url

logger = logging.getLogger("tenancy.resolver")


def matches_prefix(path: str, prefixes: Sequence[str]) -> bool:
    """Prefix match on path segments: "/health" matches "/health/db", not "/healthz"."""
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class TenantContextResolver:
    def __init__(
        self,
        request_context: RequestContext,
        control_plane: AsyncEngine,
        credentials: CredentialStore,
        cache: TenantConnectionCache,
        settings: TenancySettings,
    ) -> None:
        self._ctx = request_context
        self._control_plane = control_plane
        self._credentials = credentials
        self._cache = cache
        self._settings = settings

    @property
    def tenant_id(self) -> Optional[str]:
        return self._ctx.tenant_id

    @property
    def use_control_plane(self) -> bool:
        if matches_prefix(self._ctx.path, self._settings.control_plane_prefixes):
            return True
        if self._ctx.force_control_plane:
            return True
        return not self.tenant_id

    async def get_connection(self) -> AsyncEngine:
        """Return the engine this request should run its queries on."""
        if self.use_control_plane:
            return self._control_plane

        tenant_id = self.tenant_id
        try:
            creds = await self._credentials.get(tenant_id)
            if creds is None:
                logger.warning("No credentials for tenant %s; using control plane", tenant_id)
                platform_metrics.inc("resolver_fallback")
                return self._control_plane
            return await self._cache.get_or_create(tenant_id, build_tenant_url(self._settings, creds))
        except Exception as e:
            logger.error("Resolving tenant %s failed, using control plane: %s", tenant_id, e)
            platform_metrics.inc("resolver_fallback")
            return self._control_plane

    def get_info(self) -> Dict[str, Any]:
        return {"tenant_id": self.tenant_id, "using_control_plane": self.use_control_plane}
