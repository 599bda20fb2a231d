# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenant Lifecycle Service — create, inspect, deactivate and delete tenants.

Talks to the control plane directly and to tenant databases only through
the provisioner. Create and delete are serialized per email / tenant id
across processes when a LifecycleLock is supplied.

Deletion order:
  1. drop the physical database and role (provisioner)
  2. one control-plane transaction running the purge plan
A failure in 2 after 1 succeeded leaves rows pointing at a database that no
longer exists; it is logged at CRITICAL and raised as
ReconciliationRequiredError.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.errors import (
    MirrorRecordError,
    PurgePlanError,
    ReconciliationRequiredError,
    TenantConflictError,
    TenantNotFoundError,
)
from tenancy.core.metrics import platform_metrics
from tenancy.core.naming import database_name, new_tenant_id, role_name
from tenancy.kernel.provisioner import TenantProvisioner
from tenancy.protocols.schema import (
    ClientSeed,
    ConnectionDetails,
    DeletionOutcome,
    DeletionPreview,
    DependentCounts,
    MirrorRepair,
    PermissionReport,
    RecordCheck,
    SchemaInitResult,
    TenantCreate,
    TenantConnection,
    TenantCreated,
    TenantStatusReport,
    TenantView,
    UserSeed,
    UserView,
)
from tenancy.resilience.lock import LifecycleLock
from tenancy.storage.credentials import CredentialStore
from tenancy.storage.database import Base, ControlPlaneDatabase
from tenancy.storage.models import Client
from tenancy.storage.purge import PurgePlan, execute_purge, load_purge_plan, validate_purge_plan
from tenancy.storage.repositories import TenantRepository, UserRepository

logger = logging.getLogger("tenancy.lifecycle")


class TenantLifecycleService:
    def __init__(
        self,
        db: ControlPlaneDatabase,
        provisioner: TenantProvisioner,
        credentials: CredentialStore,
        lock: Optional[LifecycleLock] = None,
        purge_plan: Optional[PurgePlan] = None,
    ) -> None:
        self._db = db
        self._provisioner = provisioner
        self._credentials = credentials
        self._lock = lock
        self._plan = purge_plan or load_purge_plan()
        self._plan_problems = validate_purge_plan(self._plan, Base.metadata)
        for problem in self._plan_problems:
            logger.error("Purge plan '%s': %s", self._plan.name, problem)

    # ── Helpers ─────────────────────────────────────────────────

    @asynccontextmanager
    async def _guard(self, kind: str, name: str) -> AsyncIterator[None]:
        if self._lock is None:
            yield
            return
        async with self._lock.hold(kind, name):
            yield

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._db.session() as session:
            async with session.begin():
                yield session

    @staticmethod
    async def _require(session: AsyncSession, tenant_id: str) -> Client:
        client = await TenantRepository(session).get(tenant_id)
        if client is None:
            raise TenantNotFoundError(tenant_id)
        return client

    # ── Create ─────────────────────────────────────────────────

    async def create_tenant(self, data: TenantCreate) -> TenantCreated:
        """
        Register a tenant and provision its database.

        The record starts as ``provisioning`` and only becomes ``active``
        once the schema is in place. If no schema strategy succeeds the
        tenant stays ``provisioning`` and the failure is returned.

        Raises:
            TenantConflictError: the email is already registered.
            TenantBusyError: another create for the same email is running.
            ProvisioningError: the database could not be created.
        """
        async with self._guard("create", data.email):
            tenant_id = new_tenant_id()
            try:
                async with self._transaction() as session:
                    repo = TenantRepository(session)
                    if await repo.get_by_email(data.email) is not None:
                        raise TenantConflictError(
                            f"Tenant with email {data.email} already exists",
                            {"email": data.email},
                        )
                    await repo.create(
                        tenant_id,
                        name=data.name,
                        email=data.email,
                        contact_name=data.contact_name,
                        phone=data.phone,
                        address=data.address,
                        tier=data.tier,
                        status="provisioning",
                    )
            except IntegrityError as e:
                raise TenantConflictError(
                    f"Tenant with email {data.email} already exists",
                    {"email": data.email},
                ) from e

            logger.info("Tenant %s (%s) registered, provisioning", tenant_id, data.email)
            seed = ClientSeed(
                id=tenant_id,
                name=data.name,
                email=data.email,
                phone=data.phone,
                address=data.address,
                contact_name=data.contact_name,
                database_name=database_name(tenant_id),
                tier=data.tier,
                status="active",
            )

            try:
                result = await self._provisioner.create_tenant_database(tenant_id, client_seed=seed)
                status = "active" if result.schema_applied else "provisioning"
                async with self._transaction() as session:
                    await TenantRepository(session).mark_provisioned(
                        tenant_id, result.database_name, status
                    )
            except Exception as e:
                logger.error("Creating tenant %s failed, rolling back: %s", tenant_id, e)
                await self._undo_create(tenant_id)
                raise

            if not result.schema_applied:
                logger.error(
                    "Tenant %s left in 'provisioning': schema could not be applied (%s)",
                    tenant_id, "; ".join(result.errors),
                )

            return TenantCreated(
                tenant=await self.get_tenant(tenant_id),
                schema_initialized=result.schema_applied,
                schema_strategy=result.schema_strategy,
                errors=result.errors,
            )

    async def _undo_create(self, tenant_id: str) -> None:
        try:
            await self._provisioner.delete_tenant_database(tenant_id)
        except Exception as e:
            logger.error("Teardown of tenant %s database failed: %s", tenant_id, e)
        try:
            async with self._transaction() as session:
                client = await TenantRepository(session).get(tenant_id)
                if client is not None:
                    await session.delete(client)
        except Exception as e:
            logger.error("Removing tenant record %s failed: %s", tenant_id, e)

    # ── Read ───────────────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> TenantView:
        async with self._db.session() as session:
            return TenantView.model_validate(await self._require(session, tenant_id))

    async def list_tenants(self) -> List[TenantView]:
        async with self._db.session() as session:
            return [TenantView.model_validate(c) for c in await TenantRepository(session).list_all()]

    async def get_tenant_status(self, tenant_id: str) -> TenantStatusReport:
        tenant = await self.get_tenant(tenant_id)
        db_status = await self._provisioner.check_tenant_database_status(tenant_id)
        schema = await self._provisioner.verify_tenant_schema(tenant_id)
        return TenantStatusReport(
            id=tenant.id,
            database_name=tenant.database_name or database_name(tenant_id),
            status=db_status.status,
            database_size=db_status.database_size,
            connection_count=db_status.connection_count,
            schema_initialized=schema.has_schema,
            table_count=schema.table_count,
            last_checked=datetime.now(timezone.utc),
        )

    async def get_tenant_connection_details(self, tenant_id: str) -> ConnectionDetails:
        await self.get_tenant(tenant_id)
        creds = await self._credentials.get(tenant_id)
        if creds is None:
            raise TenantNotFoundError(tenant_id)
        return ConnectionDetails(
            tenant_id=tenant_id,
            database_name=creds.database_name,
            username=creds.username,
            host=self._provisioner.admin_url().host,
            port=self._provisioner.admin_url().port,
            url=self._provisioner.tenant_url(creds, hide_password=True),
        )

    async def test_tenant_permissions(self, tenant_id: str) -> PermissionReport:
        await self.get_tenant(tenant_id)
        return await self._provisioner.test_tenant_permissions(tenant_id)

    # ── Schema & mirror repair ─────────────────────────────────

    async def initialize_tenant_schema(self, tenant_id: str) -> SchemaInitResult:
        """Re-apply the schema; a ``provisioning`` tenant becomes ``active`` on success."""
        tenant = await self.get_tenant(tenant_id)
        strategy = await self._provisioner.initialize_schema(tenant_id)
        report = await self._provisioner.verify_tenant_schema(tenant_id)

        if strategy and report.has_schema and tenant.status == "provisioning":
            async with self._transaction() as session:
                await TenantRepository(session).mark_provisioned(
                    tenant_id, tenant.database_name or database_name(tenant_id), "active"
                )
            logger.info("Tenant %s is now active", tenant_id)

        if strategy and report.has_schema:
            message = f"Schema initialized via {strategy} ({report.table_count} tables)"
        else:
            message = "Schema initialization failed; see logs"
        return SchemaInitResult(
            success=bool(strategy),
            schema_initialized=report.has_schema,
            table_count=report.table_count,
            strategy=strategy,
            message=message,
        )

    async def ensure_mirror_records(self, tenant_id: str) -> MirrorRepair:
        """Write the client row and the admin user row into the tenant database if missing."""
        async with self._db.session() as session:
            client = await self._require(session, tenant_id)
            admin = await UserRepository(session).get_admin(tenant_id)
            try:
                client_seed = ClientSeed(
                    id=client.id,
                    name=client.name,
                    email=client.email,
                    phone=client.phone,
                    address=client.address,
                    contact_name=client.contact_name,
                    database_name=client.database_name,
                    tier=client.tier,
                    status=client.status,
                )
                user_seed = None
                if admin is not None:
                    user_seed = UserSeed(
                        id=admin.id,
                        first_name=admin.first_name,
                        last_name=admin.last_name or "",
                        email=admin.email,
                        password_hash=admin.password_hash,
                        role=admin.role,
                        client_id=tenant_id,
                        status=admin.status,
                    )
            except ValidationError as e:
                errors = [
                    f"{e.title}.{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ]
                logger.warning("Tenant %s has records that cannot be mirrored: %s", tenant_id, errors)
                raise MirrorRecordError(
                    f"Stored records for tenant {tenant_id} cannot be mirrored: {'; '.join(errors)}",
                    {"tenant_id": tenant_id, "errors": errors},
                ) from e

        repair = MirrorRepair()
        repair.client_written = await self._provisioner.ensure_client_record_exists(tenant_id, client_seed)
        if user_seed is not None:
            repair.user_id = user_seed.id
            repair.user_written = await self._provisioner.ensure_user_record_exists(tenant_id, user_seed)
        return repair

    # ── Diagnostics ────────────────────────────────────────────

    async def list_tenant_connections(self, include_inactive: bool = False) -> List[TenantConnection]:
        """Database and role of every (active) tenant, flagged by whether credentials are stored."""
        async with self._db.session() as session:
            clients = await TenantRepository(session).list_all()
        stored = set(await self._credentials.list_tenant_ids())
        admin = self._provisioner.admin_url()
        return [
            TenantConnection(
                tenant_id=c.id,
                name=c.name,
                status=c.status,
                database_name=c.database_name or database_name(c.id),
                username=role_name(c.id),
                host=admin.host,
                port=admin.port,
                has_credentials=c.id in stored,
            )
            for c in clients
            if include_inactive or c.status == "active"
        ]

    async def list_tenant_users(self, tenant_id: str) -> List[UserView]:
        async with self._db.session() as session:
            await self._require(session, tenant_id)
            users = await UserRepository(session).list_for_tenant(tenant_id)
            return [UserView.model_validate(u) for u in users]

    async def validate_client_record(self, tenant_id: str, client_id: str) -> RecordCheck:
        """Whether the client mirror row is present in the tenant database."""
        await self.get_tenant(tenant_id)
        exists = await self._provisioner.client_record_exists(tenant_id, client_id)
        return RecordCheck(tenant_id=tenant_id, record_id=client_id, kind="client", exists=exists)

    async def validate_user_record(self, tenant_id: str, user_id: str) -> RecordCheck:
        await self.get_tenant(tenant_id)
        exists = await self._provisioner.user_record_exists(tenant_id, user_id)
        return RecordCheck(tenant_id=tenant_id, record_id=user_id, kind="user", exists=exists)

    # ── Status ─────────────────────────────────────────────────

    async def update_tenant_status(self, tenant_id: str, status: str) -> Tuple[TenantView, int]:
        """
        Set the tenant's status and cascade it to all of its users.

        Both updates share one transaction. Returns the updated tenant and
        the number of user rows changed.
        """
        async with self._transaction() as session:
            await self._require(session, tenant_id)
            await TenantRepository(session).set_status(tenant_id, status)
            users_updated = await UserRepository(session).cascade_status(tenant_id, status)
        logger.info("Tenant %s -> %s (%d user(s) updated)", tenant_id, status, users_updated)
        return await self.get_tenant(tenant_id), users_updated

    # ── Delete ─────────────────────────────────────────────────

    async def _count_dependents(self, tenant_id: str) -> Tuple[Client, DependentCounts]:
        async with self._db.session() as session:
            client = await self._require(session, tenant_id)
            counts = await TenantRepository(session).count_dependents(tenant_id)
        return client, DependentCounts(**counts)

    async def delete_tenant(self, tenant_id: str) -> Dict[str, int]:
        """
        Drop the tenant database, then purge its control-plane rows.

        Returns rows deleted per control-plane table.

        Raises:
            TenantNotFoundError: unknown tenant.
            PurgePlanError: the purge plan does not match the schema.
            ProvisioningError: the database could not be dropped; nothing
                in the control plane was touched.
            ReconciliationRequiredError: the database is gone but the
                control-plane purge failed.
        """
        if self._plan_problems:
            raise PurgePlanError(
                "Refusing to delete with an invalid purge plan",
                {"problems": self._plan_problems},
            )

        async with self._guard("delete", tenant_id):
            async with self._db.session() as session:
                await self._require(session, tenant_id)

            await self._provisioner.delete_tenant_database(tenant_id)

            try:
                async with self._db.engine.begin() as conn:
                    deleted = await execute_purge(conn, self._plan, Base.metadata, tenant_id)
            except Exception as e:
                platform_metrics.inc("tenant_reconciliation_required")
                logger.critical(
                    "MANUAL RECONCILIATION REQUIRED: database for tenant %s was dropped "
                    "but control-plane purge failed: %s",
                    tenant_id, e,
                )
                raise ReconciliationRequiredError(
                    f"Tenant {tenant_id} database dropped but control-plane rows remain",
                    {"tenant_id": tenant_id, "cause": str(e)},
                ) from e

        platform_metrics.inc("tenant_deleted")
        logger.info("Tenant %s deleted (%d control-plane rows)", tenant_id, sum(deleted.values()))
        return deleted

    async def delete_tenant_safe(
        self,
        tenant_id: str,
        soft_delete: bool = False,
        force: bool = False,
    ) -> DeletionOutcome:
        """
        Guarded delete.

        Without ``force`` a tenant that still has users, stores or products
        is left untouched and the counts are reported. ``soft_delete`` only
        deactivates the tenant and its users.
        """
        client, counts = await self._count_dependents(tenant_id)

        if counts.total and not force:
            return DeletionOutcome(
                success=False,
                message=(
                    f"Tenant has active data ({counts.users} users, {counts.stores} stores, "
                    f"{counts.products} products). Use force to proceed with deletion."
                ),
                deleted_records=counts,
            )

        if soft_delete:
            _, users_updated = await self.update_tenant_status(tenant_id, "inactive")
            return DeletionOutcome(
                success=True,
                message=f"Tenant {client.name} has been deactivated (soft delete).",
                soft_deleted=True,
                users_updated=users_updated,
            )

        await self.delete_tenant(tenant_id)
        return DeletionOutcome(
            success=True,
            message=f"Tenant {client.name} has been permanently deleted with all data.",
            deleted_records=counts,
        )

    async def preview_tenant_deletion(self, tenant_id: str) -> DeletionPreview:
        client, counts = await self._count_dependents(tenant_id)
        db_status = await self._provisioner.check_tenant_database_status(tenant_id)

        warnings: List[str] = []
        for label, count in (("user", counts.users), ("store", counts.stores), ("product", counts.products)):
            if count:
                warnings.append(f"{count} {label}(s) will be permanently deleted from the control plane")

        can_delete = True
        if db_status.status != "connected":
            warnings.append("Tenant database is not accessible - only control-plane records would be deleted")
            can_delete = False
        if client.status == "active":
            warnings.append("Tenant is currently ACTIVE - consider deactivating first")
        if self._plan_problems:
            warnings.append("Purge plan is invalid - deletion is disabled")
            can_delete = False

        return DeletionPreview(
            tenant=TenantView.model_validate(client),
            data_to_delete=counts,
            estimated_tenant_db_size=db_status.database_size,
            warnings=warnings,
            can_delete=can_delete,
        )
