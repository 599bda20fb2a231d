# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.

The auth layer (outside this package) puts a RequestIdentity on
``request.state.identity``. Business routes depend on ``get_tenant_db``
to receive a session on the right database; administrative routes add
``use_control_plane`` to pin themselves to the control plane.
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.context import PlatformContext, get_platform_context
from tenancy.core.tenant import RequestContext, RequestIdentity
from tenancy.kernel.resolver import TenantContextResolver


def get_context() -> PlatformContext:
    return get_platform_context()


async def get_request_identity(request: Request) -> Optional[RequestIdentity]:
    """The already-resolved caller, or None for anonymous requests."""
    identity = getattr(request.state, "identity", None)
    return identity if isinstance(identity, RequestIdentity) else None


async def use_control_plane(request: Request) -> None:
    """
    Route flag: always serve this route from the control plane.

    Use as ``dependencies=[Depends(use_control_plane)]`` on a route or
    router so it runs before the resolver is built.
    """
    request.state.use_control_plane = True


async def get_resolver(
    request: Request,
    identity: Optional[RequestIdentity] = Depends(get_request_identity),
    ctx: PlatformContext = Depends(get_context),
) -> TenantContextResolver:
    return ctx.resolver(
        RequestContext(
            path=request.url.path,
            identity=identity,
            force_control_plane=getattr(request.state, "use_control_plane", False),
        )
    )


async def get_tenant_db(
    resolver: TenantContextResolver = Depends(get_resolver),
) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an async session on the resolved database."""
    engine = await resolver.get_connection()
    async with AsyncSession(engine, expire_on_commit=False, autoflush=False) as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
