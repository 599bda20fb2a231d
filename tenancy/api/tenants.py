# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenant Administration API — thin wrapper over TenantLifecycleService.

Every route here runs against the control plane.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from tenancy.api.deps import get_context, use_control_plane
from tenancy.core.context import PlatformContext
from tenancy.protocols.schema import (
    ConnectionDetails,
    DeletionOutcome,
    DeletionPreview,
    MirrorRepair,
    PermissionReport,
    SchemaInitResult,
    StatusUpdate,
    TenantCreate,
    TenantCreated,
    TenantStatusReport,
    TenantView,
)

router = APIRouter(
    prefix="/tenant",
    tags=["tenant"],
    dependencies=[Depends(use_control_plane)],
)


@router.post("", response_model=TenantCreated, status_code=201)
async def create_tenant(body: TenantCreate, ctx: PlatformContext = Depends(get_context)):
    """Register a tenant and provision its database."""
    return await ctx.lifecycle.create_tenant(body)


@router.get("", response_model=List[TenantView])
async def list_tenants(ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.list_tenants()


@router.get("/{tenant_id}", response_model=TenantView)
async def get_tenant(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.get_tenant(tenant_id)


@router.get("/{tenant_id}/status", response_model=TenantStatusReport)
async def get_tenant_status(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    """Database reachability, size and schema state."""
    return await ctx.lifecycle.get_tenant_status(tenant_id)


@router.patch("/{tenant_id}/status")
async def update_tenant_status(
    tenant_id: str,
    body: StatusUpdate,
    ctx: PlatformContext = Depends(get_context),
) -> Dict[str, Any]:
    """Change tenant status; all of the tenant's users follow."""
    tenant, users_updated = await ctx.lifecycle.update_tenant_status(tenant_id, body.status)
    return {"tenant": tenant.model_dump(mode="json"), "users_updated": users_updated}


@router.delete("/{tenant_id}")
async def delete_tenant(tenant_id: str, ctx: PlatformContext = Depends(get_context)) -> Dict[str, Any]:
    deleted = await ctx.lifecycle.delete_tenant(tenant_id)
    return {"tenant_id": tenant_id, "deleted": deleted}


@router.post("/{tenant_id}/delete-safe", response_model=DeletionOutcome)
async def delete_tenant_safe(
    tenant_id: str,
    soft_delete: bool = Query(False),
    force: bool = Query(False),
    ctx: PlatformContext = Depends(get_context),
):
    return await ctx.lifecycle.delete_tenant_safe(tenant_id, soft_delete=soft_delete, force=force)


@router.get("/{tenant_id}/delete-preview", response_model=DeletionPreview)
async def preview_tenant_deletion(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.preview_tenant_deletion(tenant_id)


@router.post("/{tenant_id}/initialize-schema", response_model=SchemaInitResult)
async def initialize_tenant_schema(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.initialize_tenant_schema(tenant_id)


@router.get("/{tenant_id}/test-permissions", response_model=PermissionReport)
async def test_tenant_permissions(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.test_tenant_permissions(tenant_id)


@router.get("/{tenant_id}/connection-details", response_model=ConnectionDetails)
async def get_tenant_connection_details(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    """Connection parameters with the password masked."""
    return await ctx.lifecycle.get_tenant_connection_details(tenant_id)


@router.post("/{tenant_id}/ensure-records", response_model=MirrorRepair)
async def ensure_mirror_records(tenant_id: str, ctx: PlatformContext = Depends(get_context)):
    return await ctx.lifecycle.ensure_mirror_records(tenant_id)
