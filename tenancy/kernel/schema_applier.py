# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Schema Appliers — bring a freshly created tenant database up to the current schema.

Two strategies, tried in order by SchemaApplierChain:
  - CommandSchemaApplier: run the external schema-push tool with
    DATABASE_URL pointing at the tenant database, bounded by a timeout.
  - SqlScriptSchemaApplier: execute an empty-to-current DDL script one
    statement at a time. The script is compiled from the tenant mirror
    metadata unless a file is configured.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import os
import shlex
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import Enum, MetaData, inspect
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.schema import CreateIndex, CreateTable

from tenancy.core.errors import SchemaApplyError
from tenancy.core.logging import redact
from tenancy.core.metrics import platform_metrics
from tenancy.storage.tenant_models import tenant_metadata

logger = logging.getLogger("tenancy.schema")


class SchemaApplier(abc.ABC):
    """One way of applying the tenant schema."""

    name: str = "abstract"

    @abc.abstractmethod
    async def apply(self, url: URL, engine: AsyncEngine) -> None:
        """
        Apply the schema to the database behind ``url`` / ``engine``.

        Raises:
            SchemaApplyError: the strategy could not complete.
        """


# ── External tool ───────────────────────────────────────────

class CommandSchemaApplier(SchemaApplier):
    name = "command"

    def __init__(self, command: str, timeout: float = 60.0, cwd: Optional[str] = None) -> None:
        self._argv = shlex.split(command) if command else []
        self._timeout = timeout
        self._cwd = cwd

    async def apply(self, url: URL, engine: AsyncEngine) -> None:
        if not self._argv:
            raise SchemaApplyError("No schema push command configured")

        env = dict(os.environ)
        # external tools expect a plain libpq-style URL
        env["DATABASE_URL"] = url.set(drivername="postgresql").render_as_string(hide_password=False)

        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                env=env,
                cwd=self._cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise SchemaApplyError(f"Cannot start '{self._argv[0]}': {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise SchemaApplyError(
                f"'{self._argv[0]}' timed out after {self._timeout:.0f}s"
            ) from e

        if proc.returncode != 0:
            tail = redact(stderr.decode(errors="replace").strip())[-500:]
            raise SchemaApplyError(
                f"'{self._argv[0]}' exited with {proc.returncode}: {tail}",
                {"returncode": proc.returncode},
            )
        logger.debug("Schema push output: %s", redact(stdout.decode(errors="replace"))[-500:])


# ── Direct SQL ──────────────────────────────────────────────

def split_sql_script(script: str) -> List[str]:
    """
    Split a DDL script on top-level semicolons.

    Semicolons inside quotes, dollar-quoted bodies and ``--`` comments do
    not end a statement. Empty statements are dropped.
    """
    statements: List[str] = []
    buf: List[str] = []
    i, n = 0, len(script)
    quote: Optional[str] = None

    while i < n:
        ch = script[i]
        if quote:
            if script.startswith(quote, i):
                buf.append(quote)
                i += len(quote)
                quote = None
                continue
            buf.append(ch)
            i += 1
            continue

        if script.startswith("--", i):
            end = script.find("\n", i)
            i = n if end == -1 else end + 1
            buf.append("\n")
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "$":
            end = script.find("$", i + 1)
            tag = script[i:end + 1] if end != -1 else ""
            if tag and all(c.isalnum() or c == "_" for c in tag[1:-1]):
                quote = tag
                buf.append(tag)
                i += len(tag)
                continue
        elif ch == ";":
            stmt = "".join(buf).strip()
            if stmt:
                statements.append(stmt)
            buf = []
            i += 1
            continue
        buf.append(ch)
        i += 1

    stmt = "".join(buf).strip()
    if stmt:
        statements.append(stmt)
    return statements


def compile_metadata_ddl(metadata: MetaData) -> List[str]:
    """Render CREATE TYPE / TABLE / INDEX statements for ``metadata`` on PostgreSQL."""
    dialect = postgresql.dialect()
    preparer = dialect.identifier_preparer
    statements: List[str] = []

    seen_enums = set()
    for table in metadata.sorted_tables:
        for column in table.columns:
            enum = column.type
            if isinstance(enum, Enum) and enum.name and enum.name not in seen_enums:
                seen_enums.add(enum.name)
                labels = ", ".join("'%s'" % v.replace("'", "''") for v in enum.enums)
                statements.append(f"CREATE TYPE {preparer.quote(enum.name)} AS ENUM ({labels})")

    for table in metadata.sorted_tables:
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip())
        for index in table.indexes:
            statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip())
    return statements


class SqlScriptSchemaApplier(SchemaApplier):
    """
    Executes the schema script statement by statement.

    A failing statement is logged and skipped (re-running the script against
    a half-built database trips "already exists" on purpose). The strategy
    only fails if the database ends up with no tables at all.
    """

    name = "sql"

    def __init__(self, script_path: str = "", metadata: MetaData = tenant_metadata) -> None:
        self._script_path = script_path
        self._metadata = metadata

    def statements(self) -> List[str]:
        if self._script_path:
            return split_sql_script(Path(self._script_path).read_text(encoding="utf-8"))
        return compile_metadata_ddl(self._metadata)

    async def apply(self, url: URL, engine: AsyncEngine) -> None:
        try:
            statements = self.statements()
        except OSError as e:
            raise SchemaApplyError(f"Cannot read schema script: {e}") from e

        applied, failed = 0, 0
        for stmt in statements:
            try:
                async with engine.begin() as conn:
                    await conn.exec_driver_sql(stmt)
                applied += 1
            except DBAPIError as e:
                failed += 1
                logger.warning("Schema statement skipped (%s): %.120s", e.orig, stmt)

        try:
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda c: inspect(c).get_table_names())
        except DBAPIError as e:
            raise SchemaApplyError(f"Cannot inspect tenant database: {e.orig}") from e

        logger.info(
            "SQL schema script: %d applied, %d skipped, %d table(s) present",
            applied, failed, len(tables),
        )
        if not tables:
            raise SchemaApplyError("Schema script left the database without tables")


# ── Fallback chain ──────────────────────────────────────────

class SchemaApplierChain:
    """Try each applier in order; the first that succeeds wins."""

    def __init__(self, appliers: Sequence[SchemaApplier]) -> None:
        self.appliers = list(appliers)

    async def apply(self, url: URL, engine: AsyncEngine) -> Tuple[str, List[str]]:
        """
        Returns (strategy_name, errors_from_earlier_strategies).

        Raises:
            SchemaApplyError: every strategy failed; ``details["errors"]``
            lists why.
        """
        errors: List[str] = []
        for applier in self.appliers:
            try:
                with platform_metrics.timed(f"schema_apply:{applier.name}"):
                    await applier.apply(url, engine)
            except SchemaApplyError as e:
                logger.warning("Schema strategy '%s' failed: %s", applier.name, e.message)
                errors.append(f"{applier.name}: {e.message}")
                continue
            platform_metrics.inc(f"schema_strategy:{applier.name}")
            return applier.name, errors

        raise SchemaApplyError("All schema strategies failed", {"errors": errors})
