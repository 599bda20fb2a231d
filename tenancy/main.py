# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenancy Application Entry Point.

FastAPI app with lifespan, middleware, the tenant administration and
database diagnostics routers, and the observability routes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tenancy.api.database import router as database_router
from tenancy.api.errors import tenancy_error_handler
from tenancy.api.middleware import HeaderIdentityMiddleware, TraceMiddleware
from tenancy.api.observability import router as observability_router
from tenancy.api.tenants import router as tenants_router
from tenancy.core.config import settings
from tenancy.core.context import init_platform_context
from tenancy.core.errors import TenancyError
from tenancy.core.logging import setup_logging
from tenancy.kernel.redis_client import close_redis_pool, get_redis_pool

logger = logging.getLogger("tenancy.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup/shutdown of platform resources."""
    setup_logging(settings.LOG_LEVEL)
    redis = await get_redis_pool()
    ctx = init_platform_context(settings, redis=redis)
    await ctx.startup()
    logger.info("[tenancy] Service ready (env=%s)", settings.TENANCY_ENV)
    yield
    await ctx.shutdown()
    await close_redis_pool()
    logger.info("[tenancy] Shutdown complete")


app = FastAPI(
    title="Tenancy",
    description="Multi-tenant database provisioning and routing",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
if settings.TENANCY_ENV == "dev":
    app.add_middleware(HeaderIdentityMiddleware)
app.add_middleware(TraceMiddleware)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(TenancyError, tenancy_error_handler)

# ── Routes ──────────────────────────────────────────────────
app.include_router(tenants_router, prefix="/api")
app.include_router(database_router, prefix="/api")
app.include_router(observability_router)
