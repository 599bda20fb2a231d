# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenant Mirror Schema — tables created inside every tenant database.

Each tenant database carries a copy of its own client row and of the users
seeded at creation time. The rest of the application schema is owned by the
schema-push tool; this metadata is what the SQL fallback applies when that
tool is unavailable.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Text
from sqlalchemy.orm import DeclarativeBase

TIERS = ("free", "basic", "premium")
MIRROR_STATUSES = ("active", "inactive", "pending", "suspended")
ROLES = ("super_admin", "admin", "manager", "employee")

# control-plane status -> value the mirror enum accepts
_STATUS_MAP = {"provisioning": "pending"}


def mirror_status(status: str) -> str:
    return _STATUS_MAP.get(status, status)


def mirror_role(role: str) -> str:
    role = (role or "").lower()
    return role if role in ROLES else "employee"


def _utcnow():
    return datetime.now(timezone.utc)


class TenantBase(DeclarativeBase):
    """Declarative base for tables that live in tenant databases."""
    pass


tier_enum = Enum(*TIERS, name="Tier")
status_enum = Enum(*MIRROR_STATUSES, name="Status")
role_enum = Enum(*ROLES, name="Role")


class TenantClient(TenantBase):
    __tablename__ = "Clients"

    id = Column("id", Text, primary_key=True)
    name = Column("name", Text, nullable=False)
    email = Column("email", Text, nullable=False, unique=True)
    phone = Column("phone", Text, nullable=True)
    address = Column("address", Text, nullable=True)
    contact_name = Column("contactName", Text, nullable=True)
    database_name = Column("databaseName", Text, nullable=True)
    tier = Column("tier", tier_enum, nullable=False, default="basic")
    status = Column("status", status_enum, nullable=False, default="active")
    created_at = Column("createdAt", DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column("updatedAt", DateTime(timezone=True), nullable=False, default=_utcnow)


class TenantUser(TenantBase):
    __tablename__ = "Users"

    id = Column("id", Text, primary_key=True)
    first_name = Column("firstName", Text, nullable=False)
    last_name = Column("lastName", Text, nullable=False, default="")
    email = Column("email", Text, nullable=False, unique=True)
    password_hash = Column("passwordHash", Text, nullable=True)
    role = Column("role", role_enum, nullable=False, default="admin")
    client_id = Column("clientId", Text, ForeignKey("Clients.id"), nullable=False)
    status = Column("status", status_enum, nullable=False, default="active")
    otp = Column("otp", Text, nullable=True)
    otp_expires_at = Column("otpExpiresAt", DateTime(timezone=True), nullable=True)
    is_otp_used = Column("isOtpUsed", Boolean, nullable=True, default=False)
    created_at = Column("createdAt", DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column("updatedAt", DateTime(timezone=True), nullable=False, default=_utcnow)


tenant_metadata = TenantBase.metadata
