# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Repository Layer — control-plane access for tenant records and their users.

Each repository takes an AsyncSession; the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.storage.models import Client, Product, Store, User


class TenantRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, tenant_id: str) -> Optional[Client]:
        result = await self.db.execute(select(Client).where(Client.id == tenant_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[Client]:
        result = await self.db.execute(select(Client).where(Client.email == email))
        return result.scalar_one_or_none()

    async def list_all(self) -> List[Client]:
        result = await self.db.execute(select(Client).order_by(Client.created_at.desc()))
        return list(result.scalars().all())

    async def create(
        self,
        tenant_id: str,
        name: str,
        email: str,
        contact_name: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        tier: str = "basic",
        status: str = "provisioning",
    ) -> Client:
        """Insert a tenant record. Returns the flushed row."""
        client = Client(
            id=tenant_id,
            name=name,
            email=email,
            contact_name=contact_name,
            phone=phone,
            address=address,
            tier=tier,
            status=status,
        )
        self.db.add(client)
        await self.db.flush()
        return client

    async def mark_provisioned(self, tenant_id: str, database_name: str, status: str) -> None:
        await self.db.execute(
            update(Client)
            .where(Client.id == tenant_id)
            .values(
                database_name=database_name,
                status=status,
                updated_at=datetime.now(timezone.utc),
            )
        )

    async def set_status(self, tenant_id: str, status: str) -> int:
        result = await self.db.execute(
            update(Client)
            .where(Client.id == tenant_id)
            .values(status=status, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount or 0

    async def count_dependents(self, tenant_id: str) -> Dict[str, int]:
        """Rows the safe-delete guard and the preview report on."""
        counts = {}
        for key, model in (("users", User), ("stores", Store), ("products", Product)):
            result = await self.db.execute(
                select(func.count()).select_from(model).where(model.client_id == tenant_id)
            )
            counts[key] = int(result.scalar_one())
        return counts


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def cascade_status(self, tenant_id: str, status: str) -> int:
        """Set ``status`` on every user of the tenant that differs. Returns rows touched."""
        result = await self.db.execute(
            update(User)
            .where(User.client_id == tenant_id, User.status != status)
            .values(status=status, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount or 0

    async def get_admin(self, tenant_id: str) -> Optional[User]:
        """The tenant's first user, treated as its admin."""
        result = await self.db.execute(
            select(User)
            .where(User.client_id == tenant_id)
            .order_by(User.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: str) -> List[User]:
        result = await self.db.execute(
            select(User).where(User.client_id == tenant_id).order_by(User.created_at.desc())
        )
        return list(result.scalars().all())
