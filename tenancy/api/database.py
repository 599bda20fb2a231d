# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Database Diagnostics API — where tenant databases live and whether their
mirror rows are in place.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from tenancy.api.deps import get_context, use_control_plane
from tenancy.core.context import PlatformContext
from tenancy.protocols.schema import RecordCheck, TenantConnection, UserView

router = APIRouter(
    prefix="/database",
    tags=["database"],
    dependencies=[Depends(use_control_plane)],
)


@router.get("/tenant-connections", response_model=List[TenantConnection])
async def list_tenant_connections(
    include_inactive: bool = Query(False),
    ctx: PlatformContext = Depends(get_context),
):
    """Connection coordinates per tenant, without passwords."""
    return await ctx.lifecycle.list_tenant_connections(include_inactive=include_inactive)


@router.get("/validate-client/{client_id}/{tenant_id}", response_model=RecordCheck)
async def validate_client(client_id: str, tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.validate_client_record(tenant_id, client_id)


@router.get("/validate-user/{user_id}/{tenant_id}", response_model=RecordCheck)
async def validate_user(user_id: str, tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.validate_user_record(tenant_id, user_id)


@router.get("/client-users/{tenant_id}", response_model=List[UserView])
async def list_client_users(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    """Control-plane users of one tenant, newest first."""
    return await ctx.lifecycle.list_tenant_users(tenant_id)
