# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Tenant Database Provisioner — physical database and role per tenant.

Creation happens in two phases:
  1. Database, role, privileges and stored credentials. On failure the
     objects this call created are dropped and ProvisioningError is raised;
     pre-existing ones are never touched.
  2. Schema and mirror rows. Failures are logged and reported in
     ProvisioningResult.errors; phase 1 is never rolled back for them.

Admin DDL runs on an AUTOCOMMIT engine because CREATE/DROP DATABASE
cannot run inside a transaction.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy import inspect, select, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from tenancy.core.config import TenancySettings
from tenancy.core.errors import ProvisioningError, SchemaApplyError, TenancyError
from tenancy.core.metrics import platform_metrics
from tenancy.core.naming import (
    database_name, password_literal, quote_ident, role_name, validate_tenant_id,
)
from tenancy.core.secrets import generate_password
from tenancy.kernel.pool_cache import TenantConnectionCache
from tenancy.kernel.schema_applier import SchemaApplierChain
from tenancy.protocols.schema import (
    ClientSeed,
    PermissionReport,
    ProvisioningResult,
    SchemaReport,
    TenantDatabaseStatus,
    UserSeed,
)
from tenancy.storage.credentials import CredentialStore, TenantCredentials, build_tenant_url
from tenancy.storage.tenant_models import TenantClient, TenantUser, mirror_role, mirror_status

logger = logging.getLogger("tenancy.provisioner")

EngineFactory = Callable[..., AsyncEngine]

_CLIENTS = TenantClient.__table__
_USERS = TenantUser.__table__

_SCHEMA_GRANTS = (
    "GRANT USAGE, CREATE ON SCHEMA public TO {role}",
    "GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA public TO {role}",
    "GRANT ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA public TO {role}",
    "GRANT ALL PRIVILEGES ON ALL FUNCTIONS IN SCHEMA public TO {role}",
    "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON TABLES TO {role}",
    "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON SEQUENCES TO {role}",
    "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON FUNCTIONS TO {role}",
)


def describe_error(e: BaseException) -> str:
    """Driver message without the SQL text (which may carry a password)."""
    if isinstance(e, DBAPIError):
        return str(e.orig).strip()
    return str(e)


class TenantProvisioner:
    """Creates, inspects and drops tenant databases."""

    def __init__(
        self,
        settings: TenancySettings,
        credentials: CredentialStore,
        cache: TenantConnectionCache,
        schema: SchemaApplierChain,
        engine_factory: EngineFactory = create_async_engine,
    ) -> None:
        self._settings = settings
        self._credentials = credentials
        self._cache = cache
        self._schema = schema
        self._engine_factory = engine_factory
        self._admin_engine: Optional[AsyncEngine] = None

    # ── URLs & engines ──────────────────────────────────────────

    def _connect_args(self) -> Dict[str, Any]:
        args: Dict[str, Any] = {}
        if self._settings.TENANT_DB_DRIVER.endswith("asyncpg"):
            args["timeout"] = self._settings.CONNECT_TIMEOUT
            if self._settings.DB_SSL:
                args["ssl"] = "require"
        return args

    def admin_url(self, database: str = "postgres") -> URL:
        return URL.create(
            self._settings.TENANT_DB_DRIVER,
            username=self._settings.DB_ADMIN_USER,
            password=self._settings.DB_ADMIN_PASSWORD,
            host=self._settings.DB_HOST,
            port=self._settings.DB_PORT,
            database=database,
        )

    def build_tenant_url(self, credentials: TenantCredentials) -> URL:
        return build_tenant_url(self._settings, credentials)

    def tenant_url(self, credentials: TenantCredentials, hide_password: bool = True) -> str:
        return self.build_tenant_url(credentials).render_as_string(hide_password=hide_password)

    def _admin(self) -> AsyncEngine:
        if self._admin_engine is None:
            self._admin_engine = self._engine_factory(
                self.admin_url(),
                isolation_level="AUTOCOMMIT",
                poolclass=NullPool,
                connect_args=self._connect_args(),
            )
        return self._admin_engine

    def _admin_on(self, database: str) -> AsyncEngine:
        """Short-lived admin engine on a tenant database; caller disposes it."""
        return self._engine_factory(
            self.admin_url(database),
            isolation_level="AUTOCOMMIT",
            poolclass=NullPool,
            connect_args=self._connect_args(),
        )

    async def _tenant_engine(self, tenant_id: str) -> Optional[AsyncEngine]:
        creds = await self._credentials.get(tenant_id)
        if creds is None:
            return None
        return await self._cache.get_or_create(tenant_id, self.build_tenant_url(creds))

    async def _require_engine(self, tenant_id: str) -> AsyncEngine:
        engine = await self._tenant_engine(tenant_id)
        if engine is None:
            raise ProvisioningError(
                f"No credentials stored for tenant {tenant_id}",
                {"tenant_id": tenant_id},
            )
        return engine

    async def close(self) -> None:
        if self._admin_engine is not None:
            await self._admin_engine.dispose()
            self._admin_engine = None

    # ── Phase 1: database, role, grants ────────────────────────

    async def _create_database(self, db_name: str) -> None:
        async with self._admin().connect() as conn:
            await conn.exec_driver_sql(f"CREATE DATABASE {quote_ident(db_name)}")

    async def _create_role(self, role: str, password: str) -> None:
        async with self._admin().connect() as conn:
            await conn.exec_driver_sql(
                f"CREATE ROLE {quote_ident(role)} WITH LOGIN PASSWORD {password_literal(password)}"
            )

    async def _grant_database(self, db_name: str, role: str) -> None:
        async with self._admin().connect() as conn:
            await conn.exec_driver_sql(
                f"GRANT ALL PRIVILEGES ON DATABASE {quote_ident(db_name)} TO {quote_ident(role)}"
            )

    async def _grant_schema_privileges(self, db_name: str, role: str) -> None:
        engine = self._admin_on(db_name)
        try:
            async with engine.connect() as conn:
                for stmt in _SCHEMA_GRANTS:
                    await conn.exec_driver_sql(stmt.format(role=quote_ident(role)))
        finally:
            await engine.dispose()

    async def _drop_database(self, db_name: str) -> None:
        async with self._admin().connect() as conn:
            await conn.execute(
                text(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    "WHERE datname = :db AND pid <> pg_backend_pid()"
                ),
                {"db": db_name},
            )
            await conn.exec_driver_sql(f"DROP DATABASE IF EXISTS {quote_ident(db_name)}")

    async def _drop_role(self, role: str) -> None:
        async with self._admin().connect() as conn:
            await conn.exec_driver_sql(f"DROP ROLE IF EXISTS {quote_ident(role)}")

    async def _cleanup(self, tenant_id: str, db_name: str, role: str, created: Set[str]) -> List[str]:
        """
        Best-effort undo of the phase-1 objects this call created.

        Objects that already existed (a second create for a live tenant)
        are left alone. Returns the cleanup steps that failed.
        """
        steps: List[Tuple[str, Callable[[], Awaitable[Any]]]] = []
        if "database" in created:
            await self._cache.evict(tenant_id)
            steps.append(("drop database", lambda: self._drop_database(db_name)))
        if "role" in created:
            steps.append(("drop role", lambda: self._drop_role(role)))
        if "database" in created:
            steps.append(("remove credentials", lambda: self._credentials.remove(tenant_id)))

        failures: List[str] = []
        for label, step in steps:
            try:
                await step()
            except Exception as e:
                failures.append(f"{label}: {describe_error(e)}")
        for failure in failures:
            logger.error("Cleanup for tenant %s incomplete: %s", tenant_id, failure)
        return failures

    # ── Create ─────────────────────────────────────────────────

    async def create_tenant_database(
        self,
        tenant_id: str,
        client_seed: Optional[ClientSeed] = None,
        user_seed: Optional[UserSeed] = None,
    ) -> ProvisioningResult:
        """
        Create the database and role for ``tenant_id`` and apply the schema.

        Raises:
            InvalidTenantIdError: ``tenant_id`` is not a UUID.
            ProvisioningError: database, role, grants or credential storage
                failed; objects created by this call have been cleaned up.
        """
        validate_tenant_id(tenant_id)
        db_name = database_name(tenant_id)
        role = role_name(tenant_id)
        creds = TenantCredentials(database_name=db_name, username=role, password=generate_password())
        start = time.perf_counter()

        logger.info("Provisioning database %s for tenant %s", db_name, tenant_id)
        created: Set[str] = set()
        try:
            await self._create_database(db_name)
            created.add("database")
            await self._create_role(role, creds.password)
            created.add("role")
            await self._grant_database(db_name, role)
            await self._grant_schema_privileges(db_name, role)
            await self._credentials.save(tenant_id, creds)
        except Exception as e:
            platform_metrics.inc("tenant_provision_failed")
            reason = describe_error(e)
            logger.error("Provisioning tenant %s failed: %s", tenant_id, reason)
            cleanup_failures = await self._cleanup(tenant_id, db_name, role, created)
            if isinstance(e, TenancyError):
                raise
            raise ProvisioningError(
                f"Failed to create database for tenant {tenant_id}: {reason}",
                {"tenant_id": tenant_id, "cleanup_failures": cleanup_failures},
            ) from e

        result = ProvisioningResult(database_name=db_name)
        url = self.build_tenant_url(creds)
        engine = await self._cache.get_or_create(tenant_id, url)

        try:
            result.schema_strategy, _ = await self._schema.apply(url, engine)
            result.schema_applied = True
        except SchemaApplyError as e:
            errors = e.details.get("errors") or [e.message]
            result.errors.extend(f"schema {err}" for err in errors)
            logger.error("Tenant %s has no schema: %s", tenant_id, "; ".join(errors))

        if client_seed is not None:
            try:
                result.client_seeded = await self._upsert_client(engine, client_seed, db_name)
            except Exception as e:
                result.errors.append(f"client record: {describe_error(e)}")
                logger.error("Client mirror for tenant %s failed: %s", tenant_id, describe_error(e))

        if user_seed is not None:
            try:
                result.user_seeded = await self._upsert_user(engine, user_seed)
            except Exception as e:
                result.errors.append(f"user record: {describe_error(e)}")
                logger.error("User mirror for tenant %s failed: %s", tenant_id, describe_error(e))

        platform_metrics.inc("tenant_provisioned")
        platform_metrics.observe("provision_latency", (time.perf_counter() - start) * 1000)
        logger.info(
            "Tenant %s provisioned (schema=%s, strategy=%s, errors=%d)",
            tenant_id, result.schema_applied, result.schema_strategy, len(result.errors),
        )
        return result

    async def initialize_schema(self, tenant_id: str) -> Optional[str]:
        """Re-run the applier chain for an existing tenant. Returns the winning strategy."""
        validate_tenant_id(tenant_id)
        creds = await self._credentials.get(tenant_id)
        if creds is None:
            raise ProvisioningError(f"No credentials stored for tenant {tenant_id}", {"tenant_id": tenant_id})
        url = self.build_tenant_url(creds)
        engine = await self._cache.get_or_create(tenant_id, url)
        try:
            strategy, _ = await self._schema.apply(url, engine)
        except SchemaApplyError as e:
            logger.error("Schema initialization for tenant %s failed: %s", tenant_id, e.details)
            return None
        logger.info("Schema for tenant %s initialized via %s", tenant_id, strategy)
        return strategy

    # ── Mirror rows ────────────────────────────────────────────

    @staticmethod
    async def _has_table(engine: AsyncEngine, name: str) -> bool:
        async with engine.connect() as conn:
            return await conn.run_sync(lambda c: inspect(c).has_table(name))

    async def _upsert_client(self, engine: AsyncEngine, seed: ClientSeed, db_name: Optional[str] = None) -> bool:
        if not await self._has_table(engine, _CLIENTS.name):
            logger.warning("Tenant database has no %s table; client mirror skipped", _CLIENTS.name)
            return False
        now = datetime.now(timezone.utc)
        values = {
            "id": seed.id,
            "name": seed.name,
            "email": seed.email,
            "phone": seed.phone,
            "address": seed.address,
            "contactName": seed.contact_name,
            "databaseName": seed.database_name or db_name,
            "tier": seed.tier,
            "status": mirror_status(seed.status),
            "updatedAt": now,
        }
        stmt = postgresql.insert(_CLIENTS).values(createdAt=now, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_CLIENTS.c.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        async with engine.begin() as conn:
            await conn.execute(stmt)
        logger.info("Client mirror row %s written", seed.id)
        return True

    async def _upsert_user(self, engine: AsyncEngine, seed: UserSeed) -> bool:
        if not await self._has_table(engine, _USERS.name):
            logger.warning("Tenant database has no %s table; user mirror skipped", _USERS.name)
            return False
        now = datetime.now(timezone.utc)
        values = {
            "id": seed.id,
            "firstName": seed.first_name,
            "lastName": seed.last_name,
            "email": seed.email,
            "passwordHash": seed.password_hash,
            "role": mirror_role(seed.role),
            "clientId": seed.client_id,
            "status": mirror_status(seed.status),
            "otp": None,
            "otpExpiresAt": None,
            "isOtpUsed": False,
            "updatedAt": now,
        }
        stmt = postgresql.insert(_USERS).values(createdAt=now, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_USERS.c.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        async with engine.begin() as conn:
            await conn.execute(stmt)
        logger.info("User mirror row %s written", seed.id)
        return True

    async def _row_exists(self, tenant_id: str, table, row_id: str) -> bool:
        engine = await self._require_engine(tenant_id)
        if not await self._has_table(engine, table.name):
            return False
        async with engine.connect() as conn:
            row = (await conn.execute(select(table.c.id).where(table.c.id == row_id))).first()
        return row is not None

    async def client_record_exists(self, tenant_id: str, client_id: str) -> bool:
        return await self._row_exists(tenant_id, _CLIENTS, client_id)

    async def user_record_exists(self, tenant_id: str, user_id: str) -> bool:
        return await self._row_exists(tenant_id, _USERS, user_id)

    async def ensure_client_record_exists(self, tenant_id: str, seed: ClientSeed) -> bool:
        """Insert the client mirror row if it is missing. Returns True if written."""
        if await self.client_record_exists(tenant_id, seed.id):
            return False
        engine = await self._require_engine(tenant_id)
        return await self._upsert_client(engine, seed, database_name(tenant_id))

    async def ensure_user_record_exists(self, tenant_id: str, seed: UserSeed) -> bool:
        """Insert the user mirror row if it is missing. Returns True if written."""
        if await self.user_record_exists(tenant_id, seed.id):
            return False
        engine = await self._require_engine(tenant_id)
        return await self._upsert_user(engine, seed)

    # ── Delete ─────────────────────────────────────────────────

    async def delete_tenant_database(self, tenant_id: str) -> None:
        """
        Drop the tenant database and role, then forget its credentials.

        Already-absent objects are fine. Raises ProvisioningError if the
        drop itself fails.
        """
        validate_tenant_id(tenant_id)
        db_name = database_name(tenant_id)
        await self._cache.evict(tenant_id)
        try:
            await self._drop_database(db_name)
            await self._drop_role(role_name(tenant_id))
        except Exception as e:
            raise ProvisioningError(
                f"Failed to drop database for tenant {tenant_id}: {describe_error(e)}",
                {"tenant_id": tenant_id},
            ) from e
        await self._credentials.remove(tenant_id)
        logger.info("Dropped database %s", db_name)

    # ── Introspection (never raises) ───────────────────────────

    async def check_tenant_database_status(self, tenant_id: str) -> TenantDatabaseStatus:
        db_name = None
        try:
            db_name = database_name(tenant_id)
            engine = await self._tenant_engine(tenant_id)
            if engine is None:
                return TenantDatabaseStatus(
                    status="disconnected", database_name=db_name, error="No stored credentials",
                )
            async with engine.connect() as conn:
                row = (
                    await conn.execute(
                        text(
                            "SELECT pg_size_pretty(pg_database_size(current_database())) AS size, "
                            "(SELECT count(*) FROM pg_stat_activity "
                            "WHERE datname = current_database()) AS connections"
                        )
                    )
                ).one()
            return TenantDatabaseStatus(
                status="connected",
                database_name=db_name,
                database_size=row.size,
                connection_count=int(row.connections),
            )
        except Exception as e:
            logger.warning("Status check for tenant %s failed: %s", tenant_id, describe_error(e))
            return TenantDatabaseStatus(status="error", database_name=db_name, error=describe_error(e))

    async def verify_tenant_schema(self, tenant_id: str) -> SchemaReport:
        try:
            engine = await self._require_engine(tenant_id)
            async with engine.connect() as conn:
                rows = await conn.execute(
                    text(
                        "SELECT table_name FROM information_schema.tables "
                        "WHERE table_schema = 'public' AND table_type = 'BASE TABLE' "
                        "ORDER BY table_name"
                    )
                )
                tables = [r[0] for r in rows]
            return SchemaReport(has_schema=bool(tables), table_count=len(tables), tables=tables)
        except Exception as e:
            logger.warning("Schema check for tenant %s failed: %s", tenant_id, describe_error(e))
            return SchemaReport(error=describe_error(e))

    async def test_tenant_permissions(self, tenant_id: str) -> PermissionReport:
        """Probe DDL rights with throwaway objects that are always rolled back."""
        report = PermissionReport()
        try:
            engine = await self._require_engine(tenant_id)
            async with engine.connect() as conn:
                report.can_create_tables = await self._probe(
                    conn, "CREATE TABLE _tenancy_permission_probe (id integer)"
                )
                report.can_create_enums = await self._probe(
                    conn, "CREATE TYPE _tenancy_permission_probe_enum AS ENUM ('probe')"
                )
                row = (
                    await conn.execute(
                        text(
                            "SELECT current_user AS grantee, "
                            "has_schema_privilege(current_user, 'public', 'USAGE') AS usage, "
                            "has_schema_privilege(current_user, 'public', 'CREATE') AS create"
                        )
                    )
                ).one()
            report.schema_privileges = [
                {"schema": "public", "grantee": row.grantee, "privilege": "USAGE", "granted": bool(row.usage)},
                {"schema": "public", "grantee": row.grantee, "privilege": "CREATE", "granted": bool(row.create)},
            ]
        except Exception as e:
            logger.warning("Permission probe for tenant %s failed: %s", tenant_id, describe_error(e))
            report.error = describe_error(e)
        return report

    @staticmethod
    async def _probe(conn, ddl: str) -> bool:
        trans = await conn.begin()
        try:
            await conn.exec_driver_sql(ddl)
            return True
        except DBAPIError as e:
            logger.info("Permission probe denied: %s", describe_error(e))
            return False
        finally:
            await trans.rollback()
