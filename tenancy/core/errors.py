# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Domain Errors — raised by the kernel, translated to HTTP by tenancy.api.errors.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TenancyError(Exception):
    """Base class for every error the tenancy kernel raises on purpose."""

    code = "TENANCY_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class TenantNotFoundError(TenancyError):
    code = "TENANT_NOT_FOUND"
    status_code = 404

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant with ID {tenant_id} not found", {"tenant_id": tenant_id})
        self.tenant_id = tenant_id


class TenantConflictError(TenancyError):
    code = "TENANT_CONFLICT"
    status_code = 409


class TenantBusyError(TenancyError):
    """Another process holds the lifecycle lock for this tenant."""

    code = "TENANT_BUSY"
    status_code = 409


class InvalidTenantIdError(TenancyError):
    code = "INVALID_TENANT_ID"
    status_code = 422


class ProvisioningError(TenancyError):
    """Database/role creation or privilege grant failed (after cleanup)."""

    code = "PROVISIONING_FAILED"
    status_code = 500


class SchemaApplyError(TenancyError):
    """A schema applier could not bring the tenant database up to date."""

    code = "SCHEMA_APPLY_FAILED"
    status_code = 500


class PurgePlanError(TenancyError):
    code = "PURGE_PLAN_INVALID"
    status_code = 500


class ReconciliationRequiredError(TenancyError):
    """
    The tenant database is gone but its control-plane rows are not.

    Nothing retries this automatically; an operator has to finish the purge.
    """

    code = "RECONCILIATION_REQUIRED"
    status_code = 500


class MirrorRecordError(TenancyError):
    """A control-plane row cannot be copied into the tenant database as stored."""

    code = "MIRROR_RECORD_INVALID"
    status_code = 422
