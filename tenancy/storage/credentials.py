# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Credential Store — per-tenant database login kept in the control plane.

Passwords go through CredentialCipher on the way in and out, so the
``tenant_credentials.password`` column only ever holds ciphertext when a
key is configured.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, inspect, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError

from tenancy.core.config import TenancySettings
from tenancy.core.secrets import CredentialCipher
from tenancy.storage.database import ControlPlaneDatabase
from tenancy.storage.models import TenantCredential

logger = logging.getLogger("tenancy.credentials")

_TABLE = TenantCredential.__table__


@dataclass(frozen=True)
class TenantCredentials:
    """Plaintext login for one tenant database. Never logged as a whole."""

    database_name: str
    username: str
    password: str

    def __repr__(self) -> str:
        return f"TenantCredentials(database={self.database_name!r}, user={self.username!r})"


class CredentialStore:
    """
    CRUD over ``tenant_credentials``.

    The table is created on first use. Creation is serialized inside the
    process and tolerates another process creating it at the same moment.
    """

    def __init__(self, db: ControlPlaneDatabase, cipher: Optional[CredentialCipher] = None) -> None:
        self._db = db
        self._cipher = cipher or CredentialCipher()
        self._initialized = False
        self._init_lock = asyncio.Lock()

    # ── Table bootstrap ─────────────────────────────────────────

    async def _table_exists(self) -> bool:
        async with self._db.engine.connect() as conn:
            return await conn.run_sync(lambda c: inspect(c).has_table(_TABLE.name))

    async def ensure_initialized(self) -> None:
        """Create ``tenant_credentials`` if it is missing. Safe to call repeatedly."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            try:
                async with self._db.engine.begin() as conn:
                    await conn.run_sync(lambda c: _TABLE.create(c, checkfirst=True))
            except DBAPIError as e:
                # another process won the CREATE TABLE race
                if not await self._table_exists():
                    raise
                logger.info("tenant_credentials was created concurrently: %s", e.orig)
            self._initialized = True
            logger.debug("Credential store ready")

    # ── CRUD ────────────────────────────────────────────────────

    def _insert(self):
        if self._db.dialect_name == "sqlite":
            return sqlite.insert(_TABLE)
        return postgresql.insert(_TABLE)

    async def save(self, tenant_id: str, credentials: TenantCredentials) -> None:
        """Insert or replace the credentials for ``tenant_id``."""
        await self.ensure_initialized()
        now = datetime.now(timezone.utc)
        ciphertext = self._cipher.encrypt(credentials.password)
        stmt = self._insert().values(
            tenant_id=tenant_id,
            database_name=credentials.database_name,
            username=credentials.username,
            password=ciphertext,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_TABLE.c.tenant_id],
            set_={
                "database_name": stmt.excluded.database_name,
                "username": stmt.excluded.username,
                "password": stmt.excluded.password,
                "updated_at": now,
            },
        )
        async with self._db.engine.begin() as conn:
            await conn.execute(stmt)
        logger.info("Saved credentials for tenant %s (user=%s)", tenant_id, credentials.username)

    async def get(self, tenant_id: str) -> Optional[TenantCredentials]:
        await self.ensure_initialized()
        async with self._db.engine.connect() as conn:
            row = (
                await conn.execute(
                    select(_TABLE.c.database_name, _TABLE.c.username, _TABLE.c.password)
                    .where(_TABLE.c.tenant_id == tenant_id)
                )
            ).first()
        if row is None:
            return None
        return TenantCredentials(
            database_name=row.database_name,
            username=row.username,
            password=self._cipher.decrypt(row.password),
        )

    async def remove(self, tenant_id: str) -> None:
        """Delete the credentials row. Missing rows are not an error."""
        await self.ensure_initialized()
        async with self._db.engine.begin() as conn:
            result = await conn.execute(delete(_TABLE).where(_TABLE.c.tenant_id == tenant_id))
        if result.rowcount:
            logger.info("Removed credentials for tenant %s", tenant_id)

    async def list_tenant_ids(self) -> List[str]:
        await self.ensure_initialized()
        async with self._db.engine.connect() as conn:
            rows = await conn.execute(select(_TABLE.c.tenant_id).order_by(_TABLE.c.tenant_id))
            return [r[0] for r in rows]


def build_tenant_url(settings: TenancySettings, credentials: TenantCredentials) -> URL:
    """Connection URL for a tenant database; render with hide_password for logs."""
    return URL.create(
        settings.TENANT_DB_DRIVER,
        username=credentials.username,
        password=credentials.password,
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        database=credentials.database_name,
    )
