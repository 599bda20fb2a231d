# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.

Kernel errors leave the service as ``{code, message, trace_id, details}``
with the status code carried by the exception class.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from tenancy.core.errors import TenancyError

logger = logging.getLogger("tenancy.api")


async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
    """Global exception handler for TenancyError."""
    trace_id = getattr(request.state, "trace_id", None) or str(uuid.uuid4())
    if exc.status_code >= 500:
        logger.error(
            "[api] %s %s -> %s: %s",
            request.method, request.url.path, exc.code, exc.message,
            extra={"trace_id": trace_id},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "trace_id": trace_id,
            "details": exc.details,
        },
    )
