# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.
"""Unit tests for TenantLifecycleService on a SQLite control plane."""

import logging
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from tenancy.core.errors import (
    MirrorRecordError,
    ProvisioningError,
    PurgePlanError,
    ReconciliationRequiredError,
    TenantBusyError,
    TenantConflictError,
    TenantNotFoundError,
)
from tenancy.core.metrics import platform_metrics
from tenancy.core.naming import database_name
from tenancy.core.secrets import CredentialCipher
from tenancy.kernel import lifecycle as lifecycle_module
from tenancy.kernel.lifecycle import TenantLifecycleService
from tenancy.kernel.pool_cache import TenantConnectionCache
from tenancy.kernel.provisioner import TenantProvisioner
from tenancy.kernel.schema_applier import SchemaApplierChain
from tenancy.protocols.schema import ProvisioningResult, TenantCreate, TenantDatabaseStatus
from tenancy.resilience.lock import LifecycleLock
from tenancy.storage import models as m
from tenancy.storage.credentials import CredentialStore, TenantCredentials
from tenancy.storage.purge import PurgePlan, PurgeStep
from tenancy.storage.repositories import UserRepository

ACME = TenantCreate(name="Acme", email="ops@acme.com", contact_name="Ana", tier="premium")

# every control-plane table that can hold a row belonging to a tenant
TENANT_TABLES = [
    model for model in vars(m).values()
    if isinstance(model, type) and issubclass(model, m.Base) and model is not m.Base
    and model is not m.TenantCredential
]


@pytest.fixture
def credentials(control_plane):
    return CredentialStore(control_plane)


@pytest.fixture
def service(control_plane, fake_provisioner, credentials, mock_redis):
    return TenantLifecycleService(
        control_plane, fake_provisioner, credentials, lock=LifecycleLock(mock_redis),
    )


async def _total_rows(control_plane):
    total = 0
    async with control_plane.session() as session:
        for model in TENANT_TABLES:
            total += (await session.execute(select(func.count()).select_from(model))).scalar_one()
    return total


class TestCreateTenant:
    @pytest.mark.asyncio
    async def test_create_active(self, service, fake_provisioner):
        created = await service.create_tenant(ACME)

        tenant = created.tenant
        assert tenant.status == "active"
        assert tenant.email == "ops@acme.com"
        assert tenant.tier == "premium"
        assert tenant.database_name == database_name(tenant.id)
        assert created.schema_initialized is True
        assert created.schema_strategy == "sql"

        args, kwargs = fake_provisioner.create_tenant_database.await_args
        assert args[0] == tenant.id
        assert kwargs["client_seed"].id == tenant.id
        assert kwargs["client_seed"].email == "ops@acme.com"

    @pytest.mark.asyncio
    async def test_schema_failure_leaves_provisioning(self, service, fake_provisioner, caplog):
        fake_provisioner.create_tenant_database.side_effect = None
        fake_provisioner.create_tenant_database.return_value = ProvisioningResult(
            database_name="client_x_db", schema_applied=False, errors=["schema sql: no tables"],
        )
        with caplog.at_level(logging.ERROR, logger="tenancy.lifecycle"):
            created = await service.create_tenant(ACME)

        assert created.tenant.status == "provisioning"
        assert created.schema_initialized is False
        assert created.errors == ["schema sql: no tables"]
        assert "left in 'provisioning'" in caplog.text

    @pytest.mark.asyncio
    async def test_duplicate_email(self, service, fake_provisioner):
        await service.create_tenant(ACME)
        with pytest.raises(TenantConflictError):
            await service.create_tenant(ACME.model_copy(update={"name": "Acme 2"}))
        assert fake_provisioner.create_tenant_database.await_count == 1
        assert len(await service.list_tenants()) == 1

    @pytest.mark.asyncio
    async def test_provisioning_error_removes_record(self, service, fake_provisioner):
        fake_provisioner.create_tenant_database.side_effect = ProvisioningError("database exists")
        with pytest.raises(ProvisioningError):
            await service.create_tenant(ACME)
        assert await service.list_tenants() == []
        fake_provisioner.delete_tenant_database.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_create_is_rejected(self, service, mock_redis):
        await LifecycleLock(mock_redis).acquire("create", "ops@acme.com")
        with pytest.raises(TenantBusyError):
            await service.create_tenant(ACME)


class TestReadTenant:
    @pytest.mark.asyncio
    async def test_get_and_list(self, service, seed_tenant):
        first = await seed_tenant()
        await seed_tenant()
        assert (await service.get_tenant(first["client"])).id == first["client"]
        assert len(await service.list_tenants()) == 2

    @pytest.mark.asyncio
    async def test_unknown(self, service, tenant_id):
        with pytest.raises(TenantNotFoundError):
            await service.get_tenant(tenant_id)

    @pytest.mark.asyncio
    async def test_status_report(self, service, seed_tenant):
        ids = await seed_tenant()
        report = await service.get_tenant_status(ids["client"])
        assert report.status == "connected"
        assert report.database_size == "8 MB"
        assert report.schema_initialized is True
        assert report.table_count == 2

    @pytest.mark.asyncio
    async def test_connection_details_hide_password(self, control_plane, credentials, settings, seed_tenant):
        provisioner = TenantProvisioner(
            settings, credentials, TenantConnectionCache(), SchemaApplierChain([]),
        )
        service = TenantLifecycleService(control_plane, provisioner, credentials)
        ids = await seed_tenant()
        await credentials.save(
            ids["client"], TenantCredentials(database_name(ids["client"]), "user_x", "z" * 43),
        )

        details = await service.get_tenant_connection_details(ids["client"])

        assert details.database_name == database_name(ids["client"])
        assert details.username == "user_x"
        assert details.host == settings.DB_HOST
        assert "z" * 43 not in details.url
        assert "***" in details.url


class TestStatus:
    @pytest.mark.asyncio
    async def test_cascade_to_users(self, service, control_plane, seed_tenant):
        ids = await seed_tenant(users=4)
        other = await seed_tenant(users=2)

        tenant, updated = await service.update_tenant_status(ids["client"], "suspended")

        assert tenant.status == "suspended"
        assert updated == 4
        async with control_plane.session() as session:
            statuses = (await session.execute(
                select(m.User.client_id, m.User.status)
            )).all()
        assert {s for c, s in statuses if c == ids["client"]} == {"suspended"}
        assert {s for c, s in statuses if c == other["client"]} == {"active"}

    @pytest.mark.asyncio
    async def test_cascade_failure_rolls_back(self, service, seed_tenant, monkeypatch):
        ids = await seed_tenant(users=3)
        monkeypatch.setattr(UserRepository, "cascade_status", AsyncMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            await service.update_tenant_status(ids["client"], "inactive")
        assert (await service.get_tenant(ids["client"])).status == "active"

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, service, tenant_id):
        with pytest.raises(TenantNotFoundError):
            await service.update_tenant_status(tenant_id, "inactive")


class TestDeleteTenant:
    @pytest.mark.asyncio
    async def test_cascade_leaves_nothing_behind(self, service, control_plane, fake_provisioner, seed_tenant):
        ids = await seed_tenant(users=3)

        deleted = await service.delete_tenant(ids["client"])

        fake_provisioner.delete_tenant_database.assert_awaited_once_with(ids["client"])
        assert deleted["clients"] == 1
        assert await _total_rows(control_plane) == 0
        with pytest.raises(TenantNotFoundError):
            await service.get_tenant(ids["client"])
        assert platform_metrics.get_counter("tenant_deleted") == 1

    @pytest.mark.asyncio
    async def test_other_tenants_untouched(self, service, control_plane, seed_tenant):
        doomed = await seed_tenant()
        before = await _total_rows(control_plane)
        survivor = await seed_tenant()
        per_tenant = await _total_rows(control_plane) - before

        await service.delete_tenant(doomed["client"])

        assert await _total_rows(control_plane) == per_tenant
        assert (await service.get_tenant(survivor["client"])).id == survivor["client"]

    @pytest.mark.asyncio
    async def test_drop_failure_touches_nothing(self, service, control_plane, fake_provisioner, seed_tenant):
        ids = await seed_tenant()
        before = await _total_rows(control_plane)
        fake_provisioner.delete_tenant_database.side_effect = ProvisioningError("cannot drop")

        with pytest.raises(ProvisioningError):
            await service.delete_tenant(ids["client"])
        assert await _total_rows(control_plane) == before

    @pytest.mark.asyncio
    async def test_purge_failure_needs_reconciliation(self, service, control_plane, seed_tenant, monkeypatch, caplog):
        ids = await seed_tenant()
        before = await _total_rows(control_plane)
        monkeypatch.setattr(lifecycle_module, "execute_purge", AsyncMock(side_effect=RuntimeError("deadlock")))

        with caplog.at_level(logging.CRITICAL, logger="tenancy.lifecycle"):
            with pytest.raises(ReconciliationRequiredError) as exc_info:
                await service.delete_tenant(ids["client"])

        assert exc_info.value.details["tenant_id"] == ids["client"]
        assert "MANUAL RECONCILIATION REQUIRED" in caplog.text
        assert platform_metrics.get_counter("tenant_reconciliation_required") == 1
        assert await _total_rows(control_plane) == before

    @pytest.mark.asyncio
    async def test_invalid_plan_refuses(self, control_plane, fake_provisioner, credentials, seed_tenant):
        plan = PurgePlan(name="broken", steps=[PurgeStep("clients", "id", "client")])
        service = TenantLifecycleService(control_plane, fake_provisioner, credentials, purge_plan=plan)
        ids = await seed_tenant()

        with pytest.raises(PurgePlanError):
            await service.delete_tenant(ids["client"])
        fake_provisioner.delete_tenant_database.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_delete_is_rejected(self, service, mock_redis, seed_tenant):
        ids = await seed_tenant()
        await LifecycleLock(mock_redis).acquire("delete", ids["client"])
        with pytest.raises(TenantBusyError):
            await service.delete_tenant(ids["client"])


class TestSafeDelete:
    @pytest.mark.asyncio
    async def test_guard_without_force(self, service, control_plane, fake_provisioner, seed_tenant):
        ids = await seed_tenant(users=3)
        before = await _total_rows(control_plane)

        outcome = await service.delete_tenant_safe(ids["client"])

        assert outcome.success is False
        assert outcome.deleted_records.users == 3
        assert outcome.deleted_records.stores == 1
        assert outcome.deleted_records.products == 1
        assert "Use force" in outcome.message
        fake_provisioner.delete_tenant_database.assert_not_awaited()
        assert await _total_rows(control_plane) == before

    @pytest.mark.asyncio
    async def test_soft_delete(self, service, fake_provisioner, seed_tenant):
        ids = await seed_tenant(users=2)
        outcome = await service.delete_tenant_safe(ids["client"], soft_delete=True, force=True)
        assert outcome.success is True
        assert outcome.soft_deleted is True
        assert outcome.users_updated == 2
        assert (await service.get_tenant(ids["client"])).status == "inactive"
        fake_provisioner.delete_tenant_database.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forced_hard_delete(self, service, control_plane, seed_tenant):
        ids = await seed_tenant(users=2)
        outcome = await service.delete_tenant_safe(ids["client"], force=True)
        assert outcome.success is True
        assert outcome.deleted_records.users == 2
        assert await _total_rows(control_plane) == 0

    @pytest.mark.asyncio
    async def test_empty_tenant_needs_no_force(self, service, control_plane, tenant_id):
        async with control_plane.session() as session:
            async with session.begin():
                session.add(m.Client(id=tenant_id, name="Empty", email="empty@example.com"))
        outcome = await service.delete_tenant_safe(tenant_id)
        assert outcome.success is True
        assert await _total_rows(control_plane) == 0


class TestPreview:
    @pytest.mark.asyncio
    async def test_warnings(self, service, seed_tenant):
        ids = await seed_tenant(users=2)
        preview = await service.preview_tenant_deletion(ids["client"])
        assert preview.can_delete is True
        assert preview.data_to_delete.users == 2
        assert preview.estimated_tenant_db_size == "8 MB"
        assert "2 user(s) will be permanently deleted from the control plane" in preview.warnings
        assert "Tenant is currently ACTIVE - consider deactivating first" in preview.warnings

    @pytest.mark.asyncio
    async def test_unreachable_database(self, service, fake_provisioner, seed_tenant):
        ids = await seed_tenant(users=0, status="inactive")
        fake_provisioner.check_tenant_database_status.return_value = TenantDatabaseStatus(
            status="error", error="refused",
        )
        preview = await service.preview_tenant_deletion(ids["client"])
        assert preview.can_delete is False
        assert any("not accessible" in w for w in preview.warnings)
        assert not any("ACTIVE" in w for w in preview.warnings)


class TestSchemaAndMirror:
    @pytest.mark.asyncio
    async def test_initialize_activates_provisioning_tenant(self, service, seed_tenant):
        ids = await seed_tenant(status="provisioning")
        result = await service.initialize_tenant_schema(ids["client"])
        assert result.success is True
        assert result.strategy == "sql"
        assert (await service.get_tenant(ids["client"])).status == "active"

    @pytest.mark.asyncio
    async def test_initialize_failure(self, service, fake_provisioner, seed_tenant):
        ids = await seed_tenant(status="provisioning")
        fake_provisioner.initialize_schema.return_value = None
        result = await service.initialize_tenant_schema(ids["client"])
        assert result.success is False
        assert (await service.get_tenant(ids["client"])).status == "provisioning"

    @pytest.mark.asyncio
    async def test_ensure_mirror_records(self, service, fake_provisioner, seed_tenant):
        ids = await seed_tenant(users=2)
        repair = await service.ensure_mirror_records(ids["client"])

        assert repair.client_written is True
        assert repair.user_written is True
        assert repair.user_id in ids["users"]
        client_seed = fake_provisioner.ensure_client_record_exists.await_args.args[1]
        user_seed = fake_provisioner.ensure_user_record_exists.await_args.args[1]
        assert client_seed.id == ids["client"]
        assert user_seed.client_id == ids["client"]

    @pytest.mark.asyncio
    async def test_ensure_mirror_records_without_users(self, service, fake_provisioner, seed_tenant):
        ids = await seed_tenant(users=0)
        repair = await service.ensure_mirror_records(ids["client"])
        assert repair.user_id is None
        fake_provisioner.ensure_user_record_exists.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ensure_mirror_records_rejects_bad_stored_email(
        self, service, fake_provisioner, seed_tenant, control_plane,
    ):
        ids = await seed_tenant(users=1)
        async with control_plane.session() as session:
            async with session.begin():
                user = await session.get(m.User, ids["users"][0])
                user.email = "not-an-email"

        with pytest.raises(MirrorRecordError) as exc_info:
            await service.ensure_mirror_records(ids["client"])

        assert exc_info.value.status_code == 422
        assert "UserSeed.email" in exc_info.value.message
        assert exc_info.value.details["tenant_id"] == ids["client"]
        fake_provisioner.ensure_client_record_exists.assert_not_awaited()
