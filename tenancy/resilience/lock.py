# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Lifecycle Lock — Redis SET NX EX guard around tenant create/delete.

Two processes creating the same tenant (same email) or deleting the same
tenant id would otherwise race on CREATE/DROP DATABASE. The lock is not
reentrant and expires after ``ttl`` seconds if its holder dies.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from tenancy.core.errors import TenantBusyError

logger = logging.getLogger("tenancy.lock")

KEY_PREFIX = "tenancy:lock"


def lock_key(kind: str, name: str) -> str:
    return f"{KEY_PREFIX}:{kind}:{name}"


class LifecycleLock:
    """Named, expiring mutex shared by every process pointing at the same Redis."""

    def __init__(self, redis: aioredis.Redis, ttl: int = 300) -> None:
        self._redis = redis
        self._ttl = ttl

    async def acquire(self, kind: str, name: str) -> Optional[str]:
        """Return an ownership token, or None if somebody else holds the lock."""
        token = uuid.uuid4().hex
        ok = await self._redis.set(lock_key(kind, name), token, nx=True, ex=self._ttl)
        return token if ok else None

    async def release(self, kind: str, name: str, token: str) -> bool:
        """Delete the lock only if ``token`` still owns it."""
        key = lock_key(kind, name)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != token:
                    await pipe.unwatch()
                    logger.warning("Lock %s expired or changed hands before release", key)
                    return False
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
                return True
            except WatchError:
                logger.warning("Lock %s was modified during release", key)
                return False

    @asynccontextmanager
    async def hold(self, kind: str, name: str) -> AsyncIterator[str]:
        """
        Hold the lock for the duration of the block.

        Raises:
            TenantBusyError: another holder has it.
        """
        token = await self.acquire(kind, name)
        if token is None:
            raise TenantBusyError(
                f"Another {kind} operation is in progress for {name}",
                {"kind": kind, "name": name},
            )
        logger.debug("Acquired %s", lock_key(kind, name))
        try:
            yield token
        finally:
            await self.release(kind, name, token)
