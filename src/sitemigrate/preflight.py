"""
Preflight checks run before anything is exported.

Checks run in this order:

1. Container runtime installed and running (fatal)
2. Source, target and staging connection settings present (fatal);
   connectivity failures are only warnings
3. Tenant has tables in the source (fatal)
4. Staging database empty (warning: it will be reset)
5. Archive bucket reachable (warning: archive locally instead)
6. Asset buckets reachable when file sync was requested (warning)

In dry-run mode fatal findings are collected on the Diagnostics instead of
raised, so the operator sees every problem in one pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import SQLAlchemyError

from sitemigrate.commands import CommandRunner, ContainerCommandBuilder
from sitemigrate.config import Settings
from sitemigrate.database import DatabaseRegistry
from sitemigrate.exceptions import (
    DependencyUnavailableError,
    FileSyncFailure,
    MigrationError,
    MissingConfigurationError,
    TenantNotFoundError,
)
from sitemigrate.file_sync import S3FileSync
from sitemigrate.models import Environment
from sitemigrate.staging import StagingDatabaseCoordinator

logger = logging.getLogger(__name__)

RUNTIME_CHECK_TIMEOUT = 30.0


@dataclass
class Diagnostics:
    """
    Findings of a preflight pass.

    Attributes:
        tenant_id: Site checked.
        source: Source environment.
        target: Target environment.
        tables: Tenant tables found in the source.
        staging_clean: Whether staging was empty (None if unknown).
        archive_mode: "s3" or "local".
        warnings: Non-fatal findings.
        fatal: Fatal findings collected in non-strict mode.
    """

    tenant_id: int
    source: Environment
    target: Environment
    tables: list[str] = field(default_factory=list)
    staging_clean: bool | None = None
    archive_mode: str = "local"
    warnings: list[str] = field(default_factory=list)
    fatal: list[MigrationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.fatal

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


class PreflightValidator:
    """
    Read-only checks of the run's external dependencies.

    Args:
        settings: Loaded settings.
        databases: Registry of database handles.
        runner: Runs the container runtime checks.
        commands: Builds the check commands.
        s3_client: Pre-built boto3 S3 client for the archive bucket check.
        file_sync: Asset sync used for the bucket access check.
    """

    def __init__(
        self,
        settings: Settings,
        databases: DatabaseRegistry,
        runner: CommandRunner,
        commands: ContainerCommandBuilder,
        *,
        s3_client: Any | None = None,
        file_sync: S3FileSync | None = None,
    ) -> None:
        self._settings = settings
        self._databases = databases
        self._runner = runner
        self._commands = commands
        self._s3_client = s3_client
        self._file_sync = file_sync

    async def validate(
        self,
        tenant_id: int,
        source: Environment,
        target: Environment,
        *,
        include_homepage: bool = False,
        skip_s3: bool = False,
        sync_files: bool = False,
        strict: bool = True,
    ) -> Diagnostics:
        """
        Run every check.

        Args:
            tenant_id: Site to migrate.
            source: Source environment.
            target: Target environment.
            include_homepage: Count the main site's content tables.
            skip_s3: Archive locally without probing object storage.
            sync_files: Also check the asset buckets.
            strict: Raise fatal findings (True) or collect them (False).
                Non-strict mode also leaves the filesystem untouched.

        Returns:
            Diagnostics with warnings and, in non-strict mode, fatal findings.

        Raises:
            DependencyUnavailableError: Container runtime missing (strict).
            MissingConfigurationError: Connection settings missing (strict).
            TenantNotFoundError: No tenant tables in source (strict).
        """
        diagnostics = Diagnostics(tenant_id=tenant_id, source=source, target=target)

        def fatal(error: MigrationError) -> None:
            if strict:
                raise error
            logger.warning("Preflight: %s", error)
            diagnostics.fatal.append(error)

        try:
            await self._check_runtime()
        except DependencyUnavailableError as e:
            fatal(e)

        configured = await self._check_databases(diagnostics, source, target, fatal)

        if source in configured:
            await self._check_tenant(diagnostics, tenant_id, source, include_homepage, fatal)

        if Environment.STAGING in configured:
            await self._check_staging(diagnostics)

        await self._check_archive(diagnostics, skip_s3, create_backup_dir=strict)

        if sync_files:
            await self._check_file_sync(diagnostics, source, target)

        logger.info(
            "Preflight complete: %d tables, archive mode %s, %d warnings",
            len(diagnostics.tables),
            diagnostics.archive_mode,
            len(diagnostics.warnings),
        )
        return diagnostics

    async def _check_runtime(self) -> None:
        runtime = self._commands.runtime
        version = await self._runner.run(self._commands.version_check(), timeout=RUNTIME_CHECK_TIMEOUT)
        if not version.ok:
            raise DependencyUnavailableError(
                runtime, version.stderr.strip() or "command not found"
            )
        daemon = await self._runner.run(self._commands.daemon_check(), timeout=RUNTIME_CHECK_TIMEOUT)
        if not daemon.ok:
            raise DependencyUnavailableError(runtime, "the daemon is not running")
        logger.debug("Container runtime: %s", version.stdout.strip())

    async def _check_databases(
        self,
        diagnostics: Diagnostics,
        source: Environment,
        target: Environment,
        fatal: Callable[[MigrationError], None],
    ) -> set[Environment]:
        configured: set[Environment] = set()
        for environment in (source, target, Environment.STAGING):
            try:
                self._databases.config_for(environment)
            except MissingConfigurationError as e:
                fatal(e)
                continue
            configured.add(environment)

            if not await self._databases.get(environment).test_connection():
                diagnostics.warn(f"Cannot connect to the {environment.value} database")
        return configured

    async def _check_tenant(
        self,
        diagnostics: Diagnostics,
        tenant_id: int,
        source: Environment,
        include_homepage: bool,
        fatal: Callable[[MigrationError], None],
    ) -> None:
        handle = self._databases.get(source)
        try:
            tables = await handle.tenant_tables(tenant_id, include_homepage)
        except (SQLAlchemyError, OSError) as e:
            fatal(DependencyUnavailableError(f"{source.value} database", str(e)))
            return

        if not tables:
            fatal(TenantNotFoundError(tenant_id, source.value))
            return
        diagnostics.tables = tables
        logger.info("Found %d tables for site %d in %s", len(tables), tenant_id, source.value)

    async def _check_staging(self, diagnostics: Diagnostics) -> None:
        coordinator = StagingDatabaseCoordinator(self._databases.get(Environment.STAGING))
        diagnostics.staging_clean = await coordinator.verify_clean()
        if not diagnostics.staging_clean:
            diagnostics.warn("Staging database is not empty; it will be reset")

    async def _check_archive(
        self,
        diagnostics: Diagnostics,
        skip_s3: bool,
        create_backup_dir: bool,
    ) -> None:
        s3 = self._settings.s3
        if skip_s3:
            logger.info("Object-storage archival skipped; artifacts will be archived locally")
        elif not s3.is_configured:
            diagnostics.warn("Archive bucket not configured; artifacts will be archived locally")
        else:
            try:
                await asyncio.to_thread(self._head_bucket, s3.bucket, s3.region)
            except (BotoCoreError, ClientError, Boto3Error) as e:
                diagnostics.warn(
                    f"Archive bucket {s3.bucket} is not reachable ({e}); "
                    "artifacts will be archived locally"
                )
            else:
                diagnostics.archive_mode = "s3"
                return

        if create_backup_dir:
            try:
                self._settings.backup_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                diagnostics.warn(f"Cannot create backup directory {self._settings.backup_path}: {e}")

    def _head_bucket(self, bucket: str | None, region: str) -> None:
        if self._s3_client is None:
            self._s3_client = boto3.client("s3", region_name=region)
        self._s3_client.head_bucket(Bucket=bucket)

    async def _check_file_sync(
        self,
        diagnostics: Diagnostics,
        source: Environment,
        target: Environment,
    ) -> None:
        file_sync = self._file_sync or S3FileSync(self._settings.file_sync)
        for environment in (source, target):
            try:
                await file_sync.check_access(environment)
            except FileSyncFailure as e:
                diagnostics.warn(f"{e}; file sync may fail")


__all__ = ["Diagnostics", "PreflightValidator"]
