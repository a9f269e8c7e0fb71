"""
Table export and import through the containerised MySQL client tools.

Both directions share the same failure policy: a timeout or a non-zero exit
is fatal and nothing is retried. A truncated dump is unsafe to load, and a
failed load may have applied part of its DDL already.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from sitemigrate.commands import CommandRunner, ContainerCommandBuilder
from sitemigrate.database import DatabaseRegistry
from sitemigrate.exceptions import (
    ExportProcessError,
    ExportTimeoutError,
    ImportProcessError,
    ImportTimeoutError,
    TableImportError,
    TenantNotFoundError,
)
from sitemigrate.models import Environment, ExportResult, ImportResult
from sitemigrate.observability import (
    ATTR_BYTE_SIZE,
    ATTR_ENVIRONMENT,
    ATTR_TABLE_COUNT,
    ATTR_TENANT_ID,
    ATTR_TIMEOUT_MINUTES,
    NullTracer,
    Tracer,
)

logger = logging.getLogger(__name__)

_CREATE_TABLE = re.compile(rb"^\s*CREATE TABLE", re.IGNORECASE)


def count_create_tables(path: Path) -> int:
    """Count CREATE TABLE statements in an SQL file, one per line start."""
    count = 0
    with open(path, "rb") as f:
        for line in f:
            if _CREATE_TABLE.match(line):
                count += 1
    return count


class TableExporter:
    """
    Dumps one tenant's tables from an environment to an SQL file.

    Args:
        databases: Registry providing handles and connection descriptors.
        runner: Executes the dump command.
        commands: Builds the container invocation.
        tracer: Optional tracer.
    """

    def __init__(
        self,
        databases: DatabaseRegistry,
        runner: CommandRunner,
        commands: ContainerCommandBuilder,
        tracer: Tracer | None = None,
    ) -> None:
        self._databases = databases
        self._runner = runner
        self._commands = commands
        self._tracer = tracer or NullTracer()

    async def export(
        self,
        tenant_id: int,
        environment: Environment,
        destination: Path,
        timeout_minutes: float,
        *,
        include_homepage: bool = False,
    ) -> ExportResult:
        """
        Export the tenant's tables.

        Args:
            tenant_id: Site id.
            environment: Environment (or staging) to dump from.
            destination: SQL file to write. Parent directories are created.
            timeout_minutes: Limit for the dump process.
            include_homepage: Include the main site's content tables.

        Returns:
            ExportResult with table count and file size.

        Raises:
            TenantNotFoundError: If the tenant has no tables there.
            ExportTimeoutError: If the dump does not finish in time.
            ExportProcessError: If the tables cannot be listed, or the dump
                exits non-zero or writes nothing.
        """
        with self._tracer.span(
            "sitemigrate.export",
            {
                ATTR_TENANT_ID: tenant_id,
                ATTR_ENVIRONMENT: environment.value,
                ATTR_TIMEOUT_MINUTES: timeout_minutes,
            },
        ):
            handle = self._databases.get(environment)
            try:
                tables = await handle.tenant_tables(tenant_id, include_homepage)
            except (SQLAlchemyError, OSError) as e:
                raise ExportProcessError(
                    tenant_id=tenant_id,
                    environment=environment.value,
                    output_path=str(destination),
                    exit_code=None,
                    stderr=f"cannot list tables: {e}",
                ) from e
            if not tables:
                raise TenantNotFoundError(tenant_id, environment.value)

            logger.debug("Exporting %d tables: %s", len(tables), ", ".join(tables))
            command = self._commands.dump(self._databases.config_for(environment), tables)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                result = await self._runner.run(
                    command.argv,
                    env=command.env,
                    stdout_path=destination,
                    timeout=timeout_minutes * 60,
                )
            except OSError as e:
                raise ExportProcessError(
                    tenant_id=tenant_id,
                    environment=environment.value,
                    output_path=str(destination),
                    exit_code=None,
                    stderr=str(e),
                ) from e

            if result.timed_out:
                raise ExportTimeoutError(
                    tenant_id=tenant_id,
                    environment=environment.value,
                    output_path=str(destination),
                    timeout_minutes=timeout_minutes,
                )
            if not result.ok or not destination.exists():
                raise ExportProcessError(
                    tenant_id=tenant_id,
                    environment=environment.value,
                    output_path=str(destination),
                    exit_code=result.exit_code,
                    stderr=result.stderr or "export file was not created",
                )

            export = ExportResult(
                path=destination,
                table_count=len(tables),
                byte_size=destination.stat().st_size,
                tables=tuple(tables),
            )

        logger.info(
            "Exported %d tables from %s (%.2f MB)",
            export.table_count,
            environment.value,
            export.size_mb,
        )
        return export


class TableImporter:
    """
    Loads an SQL file into an environment or staging.

    Args:
        databases: Registry providing connection descriptors.
        runner: Executes the restore command.
        commands: Builds the container invocation.
        tracer: Optional tracer.
    """

    def __init__(
        self,
        databases: DatabaseRegistry,
        runner: CommandRunner,
        commands: ContainerCommandBuilder,
        tracer: Tracer | None = None,
    ) -> None:
        self._databases = databases
        self._runner = runner
        self._commands = commands
        self._tracer = tracer or NullTracer()

    async def import_file(
        self,
        source_path: Path,
        environment: Environment,
        timeout_minutes: float,
        *,
        tenant_id: int | None = None,
    ) -> ImportResult:
        """
        Import an SQL artifact.

        Args:
            source_path: SQL file to load.
            environment: Destination (an environment or staging).
            timeout_minutes: Limit for the restore process.
            tenant_id: Tenant the file belongs to, for error context.

        Returns:
            ImportResult with the number of CREATE TABLE statements loaded.

        Raises:
            TableImportError: If the file does not exist or cannot be read.
            ImportTimeoutError: If the restore does not finish in time.
            ImportProcessError: If the restore exits non-zero.
        """
        if not source_path.is_file():
            raise TableImportError(
                f"SQL file not found: {source_path}",
                environment=environment.value,
                source_path=str(source_path),
                tenant_id=tenant_id,
            )

        try:
            byte_size = source_path.stat().st_size
        except OSError as e:
            raise TableImportError(
                f"SQL file not readable: {source_path}: {e}",
                environment=environment.value,
                source_path=str(source_path),
                tenant_id=tenant_id,
            ) from e

        with self._tracer.span(
            "sitemigrate.import",
            {
                ATTR_ENVIRONMENT: environment.value,
                ATTR_BYTE_SIZE: byte_size,
                ATTR_TIMEOUT_MINUTES: timeout_minutes,
            },
        ) as span:
            command = self._commands.restore(self._databases.config_for(environment))
            try:
                result = await self._runner.run(
                    command.argv,
                    env=command.env,
                    stdin_path=source_path,
                    timeout=timeout_minutes * 60,
                )
            except OSError as e:
                raise ImportProcessError(
                    environment=environment.value,
                    source_path=str(source_path),
                    exit_code=None,
                    stderr=str(e),
                    tenant_id=tenant_id,
                ) from e

            if result.timed_out:
                raise ImportTimeoutError(
                    environment=environment.value,
                    source_path=str(source_path),
                    timeout_minutes=timeout_minutes,
                    tenant_id=tenant_id,
                )
            if not result.ok:
                raise ImportProcessError(
                    environment=environment.value,
                    source_path=str(source_path),
                    exit_code=result.exit_code,
                    stderr=result.stderr,
                    tenant_id=tenant_id,
                )

            try:
                table_count = await asyncio.to_thread(count_create_tables, source_path)
            except OSError as e:
                raise TableImportError(
                    f"Imported {source_path} but could not re-read it: {e}",
                    environment=environment.value,
                    source_path=str(source_path),
                    tenant_id=tenant_id,
                ) from e
            if span is not None:
                span.set_attribute(ATTR_TABLE_COUNT, table_count)

        logger.info("Imported %d tables into %s", table_count, environment.value)
        return ImportResult(table_count=table_count, environment=environment)


__all__ = [
    "TableExporter",
    "TableImporter",
    "count_create_tables",
]
