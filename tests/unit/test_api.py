# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.
"""Unit tests for the FastAPI tenant administration, diagnostics and observability routes."""

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from tenancy.api.deps import get_tenant_db, use_control_plane
from tenancy.api.middleware import HeaderIdentityMiddleware
from tenancy.core.context import init_platform_context
from tenancy.core.naming import database_name
from tenancy.main import app
from tenancy.storage import models as m
from tenancy.storage.credentials import TenantCredentials

ACME = {"name": "Acme", "email": "Ops@Acme.com", "contact_name": "Ana", "tier": "premium"}


@pytest.fixture
def ctx(settings, mock_redis, control_plane, fake_provisioner):
    """PlatformContext over SQLite, FakeRedis and a stubbed provisioner."""
    return init_platform_context(settings, redis=mock_redis, db=control_plane, provisioner=fake_provisioner)


@pytest.fixture
async def client(ctx):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestHealthAPI:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["control_plane"] == "connected"
        assert data["tenant_pools"] == 0
        assert "version" in data

    @pytest.mark.asyncio
    async def test_trace_id_propagates(self, client):
        resp = await client.get("/api/metrics", headers={"X-Trace-Id": "trace-123"})
        assert resp.headers["X-Trace-Id"] == "trace-123"
        assert "counters" in resp.json()

    @pytest.mark.asyncio
    async def test_routing_context(self, client):
        resp = await client.get("/api/context", headers={"X-User-Id": "u1", "X-Tenant-Id": "t1"})
        assert resp.json() == {"tenant_id": "t1", "using_control_plane": False}

        resp = await client.get("/api/context")
        assert resp.json() == {"tenant_id": None, "using_control_plane": True}


class TestTenantAPI:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        resp = await client.post("/api/tenant", json=ACME)
        assert resp.status_code == 201
        data = resp.json()
        assert data["schema_initialized"] is True
        tenant = data["tenant"]
        assert tenant["email"] == "ops@acme.com"
        assert tenant["status"] == "active"
        assert tenant["database_name"] == database_name(tenant["id"])

        resp = await client.get(f"/api/tenant/{tenant['id']}")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Acme"

        resp = await client.get("/api/tenant")
        assert [t["id"] for t in resp.json()] == [tenant["id"]]

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, client):
        await client.post("/api/tenant", json=ACME)
        resp = await client.post("/api/tenant", json=ACME)
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "TENANT_CONFLICT"
        assert body["trace_id"]

    @pytest.mark.asyncio
    async def test_invalid_body(self, client):
        resp = await client.post("/api/tenant", json={"name": "Acme", "email": "not-an-email"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client, tenant_id):
        resp = await client.get(f"/api/tenant/{tenant_id}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "TENANT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_status_update_cascades(self, client, seed_tenant):
        ids = await seed_tenant(users=3)
        resp = await client.patch(f"/api/tenant/{ids['client']}/status", json={"status": "suspended"})
        assert resp.status_code == 200
        assert resp.json()["tenant"]["status"] == "suspended"
        assert resp.json()["users_updated"] == 3

        resp = await client.patch(f"/api/tenant/{ids['client']}/status", json={"status": "deleted"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_safe_delete_guard_then_force(self, client, seed_tenant):
        ids = await seed_tenant(users=2)
        resp = await client.post(f"/api/tenant/{ids['client']}/delete-safe")
        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["deleted_records"]["users"] == 2

        resp = await client.post(f"/api/tenant/{ids['client']}/delete-safe", params={"force": "true"})
        assert resp.json()["success"] is True
        assert (await client.get(f"/api/tenant/{ids['client']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_delete_and_preview(self, client, seed_tenant):
        ids = await seed_tenant(users=1)
        preview = (await client.get(f"/api/tenant/{ids['client']}/delete-preview")).json()
        assert preview["can_delete"] is True
        assert preview["data_to_delete"]["users"] == 1

        resp = await client.delete(f"/api/tenant/{ids['client']}")
        assert resp.status_code == 200
        assert resp.json()["deleted"]["clients"] == 1

    @pytest.mark.asyncio
    async def test_status_and_schema_routes(self, client, seed_tenant):
        ids = await seed_tenant(status="provisioning")
        status = (await client.get(f"/api/tenant/{ids['client']}/status")).json()
        assert status["status"] == "connected"

        result = (await client.post(f"/api/tenant/{ids['client']}/initialize-schema")).json()
        assert result["success"] is True
        assert (await client.get(f"/api/tenant/{ids['client']}")).json()["status"] == "active"

        repair = (await client.post(f"/api/tenant/{ids['client']}/ensure-records")).json()
        assert repair["client_written"] is True


    @pytest.mark.asyncio
    async def test_ensure_records_with_bad_stored_email(self, client, control_plane, seed_tenant):
        ids = await seed_tenant(users=1)
        async with control_plane.session() as session:
            async with session.begin():
                (await session.get(m.User, ids["users"][0])).email = "broken"

        resp = await client.post(f"/api/tenant/{ids['client']}/ensure-records")
        assert resp.status_code == 422
        assert resp.json()["code"] == "MIRROR_RECORD_INVALID"


class TestDatabaseAPI:
    @pytest.mark.asyncio
    async def test_tenant_connections(self, client, ctx, seed_tenant):
        active = await seed_tenant()
        suspended = await seed_tenant(status="suspended")
        await ctx.credentials.save(
            active["client"],
            TenantCredentials(database_name(active["client"]), f"user_{active['client']}", "p" * 43),
        )

        resp = await client.get("/api/database/tenant-connections")
        assert resp.status_code == 200
        rows = resp.json()
        assert [r["tenant_id"] for r in rows] == [active["client"]]
        row = rows[0]
        assert row["database_name"] == database_name(active["client"])
        assert row["username"] == f"user_{active['client']}"
        assert (row["host"], row["port"]) == ("db.internal", 5432)
        assert row["has_credentials"] is True
        assert "p" * 43 not in resp.text
        assert "password" not in row

        rows = (await client.get(
            "/api/database/tenant-connections", params={"include_inactive": "true"},
        )).json()
        by_id = {r["tenant_id"]: r for r in rows}
        assert by_id[suspended["client"]]["has_credentials"] is False

    @pytest.mark.asyncio
    async def test_validate_mirror_records(self, client, fake_provisioner, seed_tenant):
        ids = await seed_tenant(users=1)
        tenant, user = ids["client"], ids["users"][0]

        resp = await client.get(f"/api/database/validate-client/{tenant}/{tenant}")
        assert resp.json() == {"tenant_id": tenant, "record_id": tenant, "kind": "client", "exists": True}
        fake_provisioner.client_record_exists.assert_awaited_once_with(tenant, tenant)

        resp = await client.get(f"/api/database/validate-user/{user}/{tenant}")
        assert resp.json()["exists"] is False
        fake_provisioner.user_record_exists.assert_awaited_once_with(tenant, user)

    @pytest.mark.asyncio
    async def test_validate_unknown_tenant(self, client, fake_provisioner, tenant_id):
        resp = await client.get(f"/api/database/validate-client/{tenant_id}/{tenant_id}")
        assert resp.status_code == 404
        fake_provisioner.client_record_exists.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_users(self, client, seed_tenant, tenant_id):
        ids = await seed_tenant(users=3)
        await seed_tenant(users=2)

        resp = await client.get(f"/api/database/client-users/{ids['client']}")
        assert resp.status_code == 200
        users = resp.json()
        assert sorted(u["id"] for u in users) == sorted(ids["users"])
        assert all(u["client_id"] == ids["client"] for u in users)
        assert all("password_hash" not in u for u in users)

        assert (await client.get(f"/api/database/client-users/{tenant_id}")).status_code == 404


class TestTenantRouting:
    """A business route receives a session on the caller's tenant database."""

    @pytest.fixture
    async def business(self, ctx):
        business_app = FastAPI()
        business_app.add_middleware(HeaderIdentityMiddleware)

        @business_app.get("/api/current-db")
        async def current_db_route(session=Depends(get_tenant_db)):
            return {"database": session.bind.url.database}

        @business_app.get("/api/admin-db", dependencies=[Depends(use_control_plane)])
        async def admin_db_route(session=Depends(get_tenant_db)):
            return {"database": session.bind.url.database}

        transport = ASGITransport(app=business_app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
        await ctx.cache.disconnect_all()

    @pytest.mark.asyncio
    async def test_tenant_session(self, business, ctx, tenant_id):
        await ctx.credentials.save(
            tenant_id, TenantCredentials(database_name(tenant_id), "user_x", "q" * 43),
        )
        headers = {"X-User-Id": "u1", "X-Tenant-Id": tenant_id}

        resp = await business.get("/api/current-db", headers=headers)
        assert resp.json() == {"database": database_name(tenant_id)}

        resp = await business.get("/api/admin-db", headers=headers)
        assert resp.json()["database"].endswith("control.db")

    @pytest.mark.asyncio
    async def test_unknown_tenant_falls_back(self, business, tenant_id):
        resp = await business.get("/api/current-db", headers={"X-User-Id": "u1", "X-Tenant-Id": tenant_id})
        assert resp.json()["database"].endswith("control.db")

    @pytest.mark.asyncio
    async def test_anonymous(self, business):
        resp = await business.get("/api/current-db")
        assert resp.json()["database"].endswith("control.db")
