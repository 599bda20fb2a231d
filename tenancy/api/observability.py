# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Observability API — health check, metrics and routing diagnostics.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tenancy.api.deps import get_context, get_resolver
from tenancy.core.context import PlatformContext
from tenancy.core.metrics import platform_metrics
from tenancy.kernel.resolver import TenantContextResolver

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check(ctx: PlatformContext = Depends(get_context)):
    """Control-plane reachability, cached pool count and metrics."""
    control_plane_ok = await ctx.db.ping()
    return {
        "status": "ok" if control_plane_ok else "degraded",
        "version": "0.1.0",
        "control_plane": "connected" if control_plane_ok else "unreachable",
        "tenant_pools": len(ctx.cache),
        "metrics": platform_metrics.snapshot(),
    }


@router.get("/api/metrics")
async def get_metrics():
    """Return current metrics."""
    return platform_metrics.snapshot()


@router.get("/api/context")
async def get_routing_context(resolver: TenantContextResolver = Depends(get_resolver)):
    """Which database this request would be served from (no credentials)."""
    return resolver.get_info()
