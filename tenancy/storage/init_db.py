# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Database Initialization — Create control-plane tables from ORM metadata.

Also refuses to finish when the bundled purge plan does not match the
foreign-key graph, so a schema change that breaks tenant deletion shows up
at deploy time rather than on the first delete.
"""

import asyncio
import logging

from tenancy.core.config import settings
from tenancy.core.logging import setup_logging
from tenancy.storage.database import Base, ControlPlaneDatabase
from tenancy.storage.purge import load_purge_plan, validate_purge_plan

# Ensure models are imported so Base.metadata knows about them
import tenancy.storage.models  # noqa: F401

logger = logging.getLogger("tenancy.init_db")


async def main() -> int:
    """Create all control-plane tables and check the purge plan."""
    setup_logging(settings.LOG_LEVEL)
    problems = validate_purge_plan(load_purge_plan(), Base.metadata)
    for problem in problems:
        logger.error("[init_db] purge plan: %s", problem)
    if problems:
        return 1

    db = ControlPlaneDatabase(settings.CONTROL_PLANE_DATABASE_URL)
    try:
        logger.info("[init_db] Creating tables...")
        await db.create_all()
        logger.info("[init_db] Done.")
    finally:
        await db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
