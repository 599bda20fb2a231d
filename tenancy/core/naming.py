# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenant Naming — deterministic database/role names derived from the tenant id.

Identifiers end up inside DDL that cannot take bind parameters, so the tenant
id is checked against the canonical UUID form before anything is built.
"""

from __future__ import annotations

import re
import uuid

from tenancy.core.errors import InvalidTenantIdError

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_PASSWORD_RE = re.compile(r"^[A-Za-z0-9_-]{32,}$")


def new_tenant_id() -> str:
    return str(uuid.uuid4())


def validate_tenant_id(tenant_id: str) -> str:
    """Return the tenant id unchanged, or raise InvalidTenantIdError."""
    if not isinstance(tenant_id, str) or not _UUID_RE.match(tenant_id):
        raise InvalidTenantIdError(
            f"Tenant id must be a lowercase UUID, got {tenant_id!r}",
            {"tenant_id": str(tenant_id)},
        )
    return tenant_id


def database_name(tenant_id: str) -> str:
    return f"client_{validate_tenant_id(tenant_id)}_db"


def role_name(tenant_id: str) -> str:
    return f"user_{validate_tenant_id(tenant_id)}"


def quote_ident(name: str) -> str:
    """Double-quote an identifier built by this module."""
    if '"' in name or "\x00" in name:
        raise InvalidTenantIdError(f"Refusing to quote identifier {name!r}")
    return f'"{name}"'


def password_literal(password: str) -> str:
    """Single-quote a generated password for CREATE ROLE ... PASSWORD."""
    if not _PASSWORD_RE.match(password):
        raise ValueError("Generated password contains characters outside [A-Za-z0-9_-]")
    return f"'{password}'"
