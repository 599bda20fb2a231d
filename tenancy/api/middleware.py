# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
API Middleware — Trace ID propagation, request timing and a dev identity shim.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tenancy.core.metrics import platform_metrics
from tenancy.core.tenant import RequestIdentity

logger = logging.getLogger("tenancy.api")


class TraceMiddleware(BaseHTTPMiddleware):
    """
    Generates or propagates X-Trace-Id header for every request.
    Also logs request duration.
    """

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id", str(uuid.uuid4()))
        request.state.trace_id = trace_id

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = (time.perf_counter() - start) * 1000

        response.headers["X-Trace-Id"] = trace_id
        platform_metrics.observe("http_latency", elapsed)
        identity = getattr(request.state, "identity", None)
        logger.info(
            "[api] %s %s -> %d (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed,
            extra={
                "trace_id": trace_id,
                "tenant_id": getattr(identity, "tenant_id", None),
            },
        )
        return response


class HeaderIdentityMiddleware(BaseHTTPMiddleware):
    """
    Development stand-in for the auth layer.

    Maps ``X-User-Id`` / ``X-Tenant-Id`` / ``X-User-Role`` headers onto
    ``request.state.identity``. Only installed when TENANCY_ENV is "dev";
    a real deployment puts its token-validating middleware here instead.
    """

    async def dispatch(self, request: Request, call_next):
        user_id = request.headers.get("X-User-Id")
        if user_id and getattr(request.state, "identity", None) is None:
            request.state.identity = RequestIdentity(
                user_id=user_id,
                tenant_id=request.headers.get("X-Tenant-Id") or None,
                role=request.headers.get("X-User-Role") or None,
            )
        return await call_next(request)
