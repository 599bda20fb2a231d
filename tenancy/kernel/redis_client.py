# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Redis Client — the connection behind LifecycleLock.

Only tenant create/delete touch Redis, one SET NX EX and one DEL each, so
the client is small and shares the tenant connect timeout.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis

from tenancy.core.config import TenancySettings, settings
from tenancy.core.logging import redact

logger = logging.getLogger("tenancy.redis")

LOCK_CLIENT_MAX_CONNECTIONS = 4

_client: Optional[aioredis.Redis] = None


def build_redis_client(cfg: TenancySettings) -> aioredis.Redis:
    """A lazily-connecting client; nothing is opened until the first command."""
    return aioredis.from_url(
        cfg.REDIS_URL,
        decode_responses=True,
        max_connections=LOCK_CLIENT_MAX_CONNECTIONS,
        health_check_interval=30,
        socket_connect_timeout=cfg.CONNECT_TIMEOUT,
        socket_timeout=cfg.CONNECT_TIMEOUT,
    )


async def get_redis_pool(cfg: Optional[TenancySettings] = None) -> aioredis.Redis:
    global _client
    if _client is None:
        cfg = cfg or settings
        _client = build_redis_client(cfg)
        logger.info("Lifecycle lock store: %s", redact(cfg.REDIS_URL))
    return _client


async def close_redis_pool() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def inject_redis_for_test(redis_instance: aioredis.Redis) -> None:
    """Inject a fake/mock Redis instance (for testing only)."""
    global _client
    _client = redis_instance
