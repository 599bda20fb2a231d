# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Purge Plan — Load, validate and run the control-plane cascade for a tenant.

The plan is data (``purge_plan.yaml``), checked against the foreign-key
graph of the ORM metadata before it is ever executed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy import MetaData, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncConnection

from tenancy.core.errors import PurgePlanError

logger = logging.getLogger("tenancy.purge")

DEFAULT_PLAN_PATH = Path(__file__).with_name("purge_plan.yaml")

SCOPES = ("users", "stores", "products", "file_uploads", "sales", "client")


@dataclass(frozen=True)
class PurgeStep:
    table: str
    column: str
    scope: str

    def __str__(self) -> str:
        return f"{self.table}.{self.column} <- {self.scope}"


@dataclass
class PurgePlan:
    """Ordered list of delete steps."""

    name: str
    steps: List[PurgeStep] = field(default_factory=list)

    def tables(self) -> List[str]:
        seen: List[str] = []
        for step in self.steps:
            if step.table not in seen:
                seen.append(step.table)
        return seen


def _parse_plan(config: Any) -> PurgePlan:
    if not isinstance(config, dict) or not isinstance(config.get("steps"), list):
        raise PurgePlanError("Purge plan must be a mapping with a 'steps' list")
    steps = []
    for i, raw in enumerate(config["steps"]):
        try:
            steps.append(PurgeStep(table=raw["table"], column=raw["column"], scope=raw["scope"]))
        except (KeyError, TypeError) as e:
            raise PurgePlanError(f"Purge step {i} is malformed: {raw!r}") from e
    return PurgePlan(name=config.get("name", "unnamed"), steps=steps)


def load_purge_plan(path: Optional[str | Path] = None) -> PurgePlan:
    """Load a purge plan from a YAML file (the bundled one by default)."""
    with open(path or DEFAULT_PLAN_PATH, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)
    return _parse_plan(config)


def load_purge_plan_from_string(yaml_content: str) -> PurgePlan:
    return _parse_plan(yaml.safe_load(yaml_content))


def validate_purge_plan(plan: PurgePlan, metadata: MetaData) -> List[str]:
    """
    Validate a purge plan. Returns list of error messages (empty = valid).

    Checks:
      1. Every scope is known
      2. Every table and column exists in ``metadata``
      3. Every table holding a foreign key to a purged table has a step too
      4. All steps of such a referencing table run before the first step
         of the table it references
    """
    errors: List[str] = []
    positions: Dict[str, List[int]] = {}

    for i, step in enumerate(plan.steps):
        if step.scope not in SCOPES:
            errors.append(f"Step {i} ({step}): unknown scope '{step.scope}'")
        table = metadata.tables.get(step.table)
        if table is None:
            errors.append(f"Step {i} ({step}): unknown table '{step.table}'")
            continue
        if step.column not in table.c:
            errors.append(f"Step {i} ({step}): table '{step.table}' has no column '{step.column}'")
        positions.setdefault(step.table, []).append(i)

    for target, target_steps in positions.items():
        first_delete = min(target_steps)
        for dependent in metadata.tables.values():
            if dependent.name == target:
                continue
            if not any(fk.column.table.name == target for fk in dependent.foreign_keys):
                continue
            dependent_steps = positions.get(dependent.name)
            if not dependent_steps:
                errors.append(
                    f"Table '{dependent.name}' references '{target}' but is never purged"
                )
            elif max(dependent_steps) > first_delete:
                errors.append(
                    f"Table '{dependent.name}' is purged at step {max(dependent_steps)}, "
                    f"after '{target}' at step {first_delete}"
                )

    return errors


# ── Execution ───────────────────────────────────────────────

@dataclass
class ScopeIds:
    """Id sets a purge step can be scoped by, collected up front."""

    client: List[str]
    users: List[str] = field(default_factory=list)
    stores: List[str] = field(default_factory=list)
    products: List[str] = field(default_factory=list)
    file_uploads: List[str] = field(default_factory=list)
    sales: List[str] = field(default_factory=list)

    def get(self, scope: str) -> List[str]:
        return getattr(self, scope)


async def collect_scope_ids(conn: AsyncConnection, metadata: MetaData, tenant_id: str) -> ScopeIds:
    t = metadata.tables

    async def ids(stmt) -> List[str]:
        return [r[0] for r in await conn.execute(stmt)]

    users = await ids(select(t["users"].c.id).where(t["users"].c.client_id == tenant_id))
    stores = await ids(select(t["stores"].c.id).where(t["stores"].c.client_id == tenant_id))
    products = await ids(select(t["products"].c.id).where(t["products"].c.client_id == tenant_id))

    uploads = t["file_upload_inventory"]
    file_uploads = await ids(select(uploads.c.id).where(uploads.c.store_id.in_(stores))) if stores else []

    sales = t["sales"]
    sale_ids = await ids(
        select(sales.c.id).where(
            or_(
                sales.c.client_id == tenant_id,
                sales.c.user_id.in_(users),
                sales.c.store_id.in_(stores),
            )
        )
    )

    return ScopeIds(
        client=[tenant_id],
        users=users,
        stores=stores,
        products=products,
        file_uploads=file_uploads,
        sales=sale_ids,
    )


async def execute_purge(
    conn: AsyncConnection,
    plan: PurgePlan,
    metadata: MetaData,
    tenant_id: str,
) -> Dict[str, int]:
    """
    Run every step of ``plan`` on ``conn`` and return rows deleted per table.

    Runs inside whatever transaction ``conn`` is in; the caller owns commit.
    Each delete is filtered by the tenant's own ids, never table-wide.
    """
    scope_ids = await collect_scope_ids(conn, metadata, tenant_id)
    deleted: Dict[str, int] = {}

    for step in plan.steps:
        values = scope_ids.get(step.scope)
        if not values:
            continue
        table = metadata.tables[step.table]
        result = await conn.execute(delete(table).where(table.c[step.column].in_(values)))
        count = result.rowcount or 0
        deleted[step.table] = deleted.get(step.table, 0) + count
        if count:
            logger.debug("[purge] %s: %d row(s)", step, count)

    return deleted
