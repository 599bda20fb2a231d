# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Shared test fixtures for all Tenancy tests.
"""

import uuid
from unittest.mock import MagicMock

import fakeredis.aioredis
import pytest
from cryptography.fernet import Fernet
from sqlalchemy.engine import URL

from tenancy.core.config import TenancySettings
from tenancy.core.metrics import platform_metrics
from tenancy.core.naming import database_name
from tenancy.kernel.provisioner import TenantProvisioner
from tenancy.kernel.redis_client import inject_redis_for_test
from tenancy.protocols.schema import ProvisioningResult, SchemaReport, TenantDatabaseStatus
from tenancy.storage import models as m
from tenancy.storage.database import ControlPlaneDatabase


@pytest.fixture(autouse=True)
def clean_metrics():
    platform_metrics.reset()
    yield
    platform_metrics.reset()


@pytest.fixture
def mock_redis():
    """Provide a FakeRedis async instance."""
    r = fakeredis.aioredis.FakeRedis(decode_responses=True)
    inject_redis_for_test(r)
    return r


@pytest.fixture
def settings():
    return TenancySettings(
        _env_file=None,
        CREDENTIAL_ENCRYPTION_KEY=Fernet.generate_key().decode(),
        SCHEMA_PUSH_COMMAND="",
    )


@pytest.fixture
async def control_plane(tmp_path):
    """Control plane on a throwaway SQLite file, all tables created."""
    db = ControlPlaneDatabase(f"sqlite+aiosqlite:///{tmp_path / 'control.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def tenant_id():
    return str(uuid.uuid4())


@pytest.fixture
def fake_provisioner():
    """TenantProvisioner double whose database side always succeeds."""
    provisioner = MagicMock(spec=TenantProvisioner)

    async def create(tenant_id, client_seed=None, user_seed=None):
        return ProvisioningResult(
            database_name=database_name(tenant_id),
            schema_applied=True,
            schema_strategy="sql",
            client_seeded=client_seed is not None,
        )

    provisioner.create_tenant_database.side_effect = create
    provisioner.delete_tenant_database.return_value = None
    provisioner.check_tenant_database_status.return_value = TenantDatabaseStatus(
        status="connected", database_size="8 MB", connection_count=1,
    )
    provisioner.verify_tenant_schema.return_value = SchemaReport(
        has_schema=True, table_count=2, tables=["Clients", "Users"],
    )
    provisioner.initialize_schema.return_value = "sql"
    provisioner.ensure_client_record_exists.return_value = True
    provisioner.ensure_user_record_exists.return_value = True
    provisioner.client_record_exists.return_value = True
    provisioner.user_record_exists.return_value = False
    provisioner.admin_url.return_value = URL.create(
        "postgresql+asyncpg", username="postgres", host="db.internal", port=5432, database="postgres",
    )
    return provisioner


@pytest.fixture
def seed_tenant(control_plane):
    """
    Factory that writes a tenant and a row in every table that hangs off it.

    Returns the ids it created, keyed by model name.
    """

    async def _seed(tenant_id=None, users=2, status="active", email=None):
        tenant_id = tenant_id or str(uuid.uuid4())
        ids = {"client": tenant_id}
        async with control_plane.session() as session:
            async with session.begin():
                session.add(m.Client(
                    id=tenant_id,
                    name=f"Tenant {tenant_id[:8]}",
                    email=email or f"{tenant_id[:8]}@example.com",
                    tier="basic",
                    status=status,
                    database_name=database_name(tenant_id),
                ))
                await session.flush()

                user_ids = [str(uuid.uuid4()) for _ in range(users)]
                for i, uid in enumerate(user_ids):
                    session.add(m.User(
                        id=uid, client_id=tenant_id, first_name=f"User{i}",
                        email=f"{uid[:8]}@example.com", status=status,
                    ))
                store_id, product_id = str(uuid.uuid4()), str(uuid.uuid4())
                session.add(m.Store(id=store_id, client_id=tenant_id, name="Main"))
                session.add(m.Product(id=product_id, client_id=tenant_id, name="Widget"))
                session.add(m.Business(client_id=tenant_id))
                await session.flush()

                ids.update(users=user_ids, store=store_id, product=product_id)
                if not user_ids:
                    return ids

                uid = user_ids[0]
                for model in (m.AuditLog, m.Notification, m.ApiToken, m.InviteLink, m.PasswordResetToken):
                    session.add(model(user_id=uid))
                session.add(m.Permission(granted_by=uid))
                session.add(m.RoleTemplate(created_by=uid))
                session.add(m.UserRole(user_id=uid, assigned_by=uid))
                session.add(m.UserStoreMap(user_id=uid, store_id=store_id))
                session.add(m.StoreSetting(store_id=store_id))
                session.add(m.Supplier(store_id=store_id))
                session.add(m.Customer(store_id=store_id, client_id=tenant_id))
                session.add(m.Report(store_id=store_id))
                session.add(m.Expense(user_id=uid, store_id=store_id))
                session.add(m.OrderProcessing(driver_id=uid, store_id=store_id))
                session.add(m.SaleAdjustment(user_id=uid, store_id=store_id, product_id=product_id))
                session.add(m.PurchaseOrder(user_id=uid, store_id=store_id, product_id=product_id))
                session.add(m.Pack(product_id=product_id))

                upload_id, sale_id = str(uuid.uuid4()), str(uuid.uuid4())
                session.add(m.FileUploadInventory(id=upload_id, store_id=store_id))
                session.add(m.Sale(id=sale_id, user_id=uid, store_id=store_id, client_id=tenant_id))
                await session.flush()
                session.add(m.ErrorLog(file_upload_id=upload_id))
                session.add(m.SaleReturn(sale_id=sale_id, processed_by=uid))
                ids.update(sale=sale_id, upload=upload_id)
        return ids

    return _seed
