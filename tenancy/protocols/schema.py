# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenancy Protocol Schema — records exchanged between the kernel and its callers.

Design decisions:
  - Seeds are explicit models; id, name and email are checked before any
    SQL is issued with them.
  - Read-only reports carry their own failure fields instead of raising.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

TenantStatus = Literal["active", "inactive", "suspended", "provisioning"]
Tier = Literal["free", "basic", "premium"]


def _check_email(value: str) -> str:
    value = value.strip()
    local, _, domain = value.partition("@")
    if not local or "." not in domain:
        raise ValueError(f"'{value}' is not a valid email address")
    return value.lower()


Email = Annotated[str, AfterValidator(_check_email)]


# ── Seeds ───────────────────────────────────────────────────

class ClientSeed(BaseModel):
    """Client row mirrored into a new tenant database."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    email: Email = Field(..., min_length=3)
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_name: Optional[str] = None
    database_name: Optional[str] = None
    tier: Tier = "basic"
    status: str = "active"


class UserSeed(BaseModel):
    """Initial (usually admin) user mirrored into a new tenant database."""

    id: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    email: Email = Field(..., min_length=3)
    password_hash: Optional[str] = None
    role: str = "admin"
    client_id: str = Field(..., min_length=1)
    status: str = "active"


# ── Tenant records ──────────────────────────────────────────

class TenantCreate(BaseModel):
    """Request body for POST /api/tenant."""

    name: str = Field(..., min_length=1, max_length=256)
    email: Email = Field(..., min_length=3, max_length=256)
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tier: Tier = "basic"


class TenantView(BaseModel):
    """Control-plane tenant record as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tier: str
    status: str
    database_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StatusUpdate(BaseModel):
    status: TenantStatus


# ── Provisioner results ─────────────────────────────────────

class ProvisioningResult(BaseModel):
    database_name: str
    schema_applied: bool = False
    schema_strategy: Optional[str] = None
    client_seeded: bool = False
    user_seeded: bool = False
    errors: List[str] = Field(default_factory=list)


class TenantCreated(BaseModel):
    """Outcome of create_tenant: the record plus how far provisioning got."""

    tenant: TenantView
    schema_initialized: bool
    schema_strategy: Optional[str] = None
    errors: List[str] = Field(default_factory=list)


class TenantDatabaseStatus(BaseModel):
    status: Literal["connected", "disconnected", "error"]
    database_name: Optional[str] = None
    database_size: Optional[str] = None
    connection_count: Optional[int] = None
    error: Optional[str] = None


class SchemaReport(BaseModel):
    has_schema: bool = False
    table_count: int = 0
    tables: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class PermissionReport(BaseModel):
    can_create_tables: bool = False
    can_create_enums: bool = False
    schema_privileges: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None


class ConnectionDetails(BaseModel):
    tenant_id: str
    database_name: str
    username: str
    host: str
    port: int
    url: str


class TenantConnection(BaseModel):
    """Where a tenant database lives. Passwords stay in the credential store."""

    tenant_id: str
    name: str
    status: str
    database_name: str
    username: str
    host: Optional[str] = None
    port: Optional[int] = None
    has_credentials: bool


class RecordCheck(BaseModel):
    tenant_id: str
    record_id: str
    kind: Literal["client", "user"]
    exists: bool


class UserView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    first_name: str
    last_name: Optional[str] = None
    email: str
    role: str
    status: str
    created_at: Optional[datetime] = None


# ── Deletion ────────────────────────────────────────────────

class DependentCounts(BaseModel):
    users: int = 0
    stores: int = 0
    products: int = 0

    @property
    def total(self) -> int:
        return self.users + self.stores + self.products


class DeletionPreview(BaseModel):
    tenant: TenantView
    data_to_delete: DependentCounts
    estimated_tenant_db_size: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    can_delete: bool


class DeletionOutcome(BaseModel):
    success: bool
    message: str
    deleted_records: DependentCounts = Field(default_factory=DependentCounts)
    soft_deleted: bool = False
    users_updated: int = 0


# ── Lifecycle reports ───────────────────────────────────────

class TenantStatusReport(BaseModel):
    id: str
    database_name: str
    status: str
    database_size: Optional[str] = None
    connection_count: Optional[int] = None
    schema_initialized: bool = False
    table_count: int = 0
    last_checked: datetime


class SchemaInitResult(BaseModel):
    success: bool
    schema_initialized: bool
    table_count: int = 0
    strategy: Optional[str] = None
    message: str


class MirrorRepair(BaseModel):
    client_written: bool = False
    user_written: bool = False
    user_id: Optional[str] = None
