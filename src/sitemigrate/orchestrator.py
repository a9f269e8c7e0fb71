"""
MigrationOrchestrator - runs one tenant migration end to end.

Stages run strictly in sequence, each inside a span named
"sitemigrate.stage.<state>":

    validating -> exporting_source -> importing_staging -> rewriting
        -> backing_up_target (unless --skip-backup)
        -> exporting_staging -> importing_target
        -> syncing_files (only with --sync-s3)
        -> archiving -> cleaning_up -> done

Failure policy:
    - Input validation happens before the state machine starts and is
      fatal in every mode.
    - A fatal error in any later stage moves the run to FAILED, resets
      staging on a best-effort basis, keeps the working directory and
      re-raises the error with its stage recorded. Exceptions that are not
      MigrationErrors are wrapped in UnexpectedStageError first.
    - An operator cancellation also resets staging before returning.
    - File sync, archival and cleanup problems are recorded as warnings.

Every mutating call goes through an Effector, so a dry run walks the same
stages, logs what it would do and always reaches DONE.

Usage:
    >>> orchestrator = MigrationOrchestrator(settings, databases=DatabaseRegistry(settings))
    >>> result = await orchestrator.run(
    ...     MigrationRequest(tenant_id=43, source=Environment.PROD, target=Environment.PPRD)
    ... )
    >>> print(result.archive.location)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import tempfile
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from sitemigrate.archival import ArchivalService, build_archive_sinks
from sitemigrate.cleanup import CleanupCoordinator
from sitemigrate.commands import CommandRunner, ContainerCommandBuilder, SubprocessCommandRunner
from sitemigrate.config import Settings
from sitemigrate.database import DatabaseRegistry
from sitemigrate.effector import Effector, create_effector
from sitemigrate.exceptions import (
    ArchivalError,
    FileSyncFailure,
    InvalidEnvironmentError,
    InvalidStateTransitionError,
    MigrationError,
    TenantNotFoundError,
    UnexpectedStageError,
    ValidationError,
)
from sitemigrate.file_sync import S3FileSync
from sitemigrate.mapping import EnvironmentMappingResolver, parse_custom_rule
from sitemigrate.models import (
    ArchiveMetadata,
    ArtifactPurpose,
    Environment,
    ExportResult,
    FileSyncResult,
    MigrationArtifact,
    MigrationResult,
    MigrationRun,
    MigrationState,
    RewriteReport,
    RewriteRule,
)
from sitemigrate.naming import artifact_file_name, run_directory
from sitemigrate.observability import (
    ATTR_DRY_RUN,
    ATTR_SOURCE_ENV,
    ATTR_STAGE,
    ATTR_TARGET_ENV,
    ATTR_TENANT_ID,
    Tracer,
    create_tracer,
)
from sitemigrate.preflight import Diagnostics, PreflightValidator
from sitemigrate.search_replace import SearchReplaceEngine
from sitemigrate.staging import StagingDatabaseCoordinator
from sitemigrate.transfer import TableExporter, TableImporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationRequest:
    """
    Operator input for one migration.

    Attributes:
        tenant_id: Site to migrate.
        source: Environment to copy from.
        target: Environment to copy to.
        dry_run: Log mutating calls instead of running them.
        force: Skip the confirmation prompt.
        skip_backup: Do not export the target before overwriting it.
        skip_s3: Archive to the local backup directory only.
        sync_files: Also copy uploaded assets between buckets.
        work_dir: Parent of the run's working directory (system temp dir
            if None).
        keep_files: Keep artifacts and the working directory after success.
        timeout_minutes: Per export/import timeout (settings default if None).
        custom_domain: Extra "source:target" rewrite applied last.
        include_homepage: Include the main site's content tables.
        verbose: Log per-table detail.
    """

    tenant_id: int
    source: Environment
    target: Environment
    dry_run: bool = False
    force: bool = False
    skip_backup: bool = False
    skip_s3: bool = False
    sync_files: bool = False
    work_dir: Path | None = None
    keep_files: bool = False
    timeout_minutes: float | None = None
    custom_domain: str | None = None
    include_homepage: bool = False
    verbose: bool = False


ConfirmCallback = Callable[[MigrationRun, list[RewriteRule]], bool]


class MigrationOrchestrator:
    """
    Sequences the migration stages for one run at a time.

    The caller must hold the staging lock for the duration of run().

    Args:
        settings: Loaded settings.
        databases: Registry of database handles.
        runner: Executes container commands (subprocesses by default).
        commands: Builds container commands.
        resolver: Rewrite-rule resolver.
        archival: Archival service. Built per run from settings if None.
        file_sync: Asset sync used by the syncing_files stage.
        preflight: Preflight validator.
        s3_client: Shared boto3 S3 client for archival and preflight.
        tracer: Optional tracer; created from settings.enable_tracing if None.
        confirm: Asked before the first mutating stage unless the request is
            forced or a dry run. None proceeds without asking.
        clock: Returns the run start time.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        databases: DatabaseRegistry,
        runner: CommandRunner | None = None,
        commands: ContainerCommandBuilder | None = None,
        resolver: EnvironmentMappingResolver | None = None,
        archival: ArchivalService | None = None,
        file_sync: S3FileSync | None = None,
        preflight: PreflightValidator | None = None,
        s3_client: Any | None = None,
        tracer: Tracer | None = None,
        confirm: ConfirmCallback | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings
        self._databases = databases
        self._tracer = tracer or create_tracer(__name__, settings.enable_tracing)
        self._runner = runner or SubprocessCommandRunner()
        self._commands = commands or ContainerCommandBuilder(settings.container)
        self._resolver = resolver or EnvironmentMappingResolver()
        self._archival = archival
        self._file_sync = file_sync
        self._s3_client = s3_client
        self._confirm = confirm
        self._clock = clock

        self._exporter = TableExporter(databases, self._runner, self._commands, self._tracer)
        self._importer = TableImporter(databases, self._runner, self._commands, self._tracer)
        self._preflight = preflight or PreflightValidator(
            settings,
            databases,
            self._runner,
            self._commands,
            s3_client=s3_client,
            file_sync=file_sync,
        )

    # ------------------------------------------------------------------
    # Lazily built staging collaborators. Building them needs the staging
    # connection settings, which a dry run may not have.
    # ------------------------------------------------------------------

    def _staging(self) -> StagingDatabaseCoordinator:
        return StagingDatabaseCoordinator(self._databases.get(Environment.STAGING), self._tracer)

    def _cleanup(self) -> CleanupCoordinator:
        return CleanupCoordinator(self._staging())

    def _search_replace(self) -> SearchReplaceEngine:
        return SearchReplaceEngine(self._databases.get(Environment.STAGING), self._tracer)

    def _archival_for(self, request: MigrationRequest) -> ArchivalService:
        if self._archival is not None:
            return self._archival
        sinks = build_archive_sinks(
            self._settings, skip_s3=request.skip_s3, s3_client=self._s3_client
        )
        return ArchivalService(sinks, self._tracer)

    def _file_sync_service(self) -> S3FileSync:
        if self._file_sync is None:
            self._file_sync = S3FileSync(self._settings.file_sync)
        return self._file_sync

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_request(self, request: MigrationRequest) -> list[RewriteRule]:
        """
        Check operator input and resolve the rewrite rules.

        Runs before anything external is touched.

        Returns:
            The ordered rewrite rules for the run.

        Raises:
            ValidationError: Bad tenant id, environment, timeout or custom rule.
            UnsupportedPathError: No rule set for the pair.
        """
        try:
            if request.tenant_id < 1:
                raise ValidationError(
                    f"Site ID must be a positive integer, got {request.tenant_id}"
                )
            for environment in (request.source, request.target):
                if not environment.is_endpoint:
                    raise InvalidEnvironmentError(
                        environment.value,
                        "The staging database cannot be a migration source or target",
                    )
            if request.source == request.target:
                raise InvalidEnvironmentError(
                    request.target.value, "Source and target environments must be different"
                )
            if request.timeout_minutes is not None and request.timeout_minutes <= 0:
                raise ValidationError(
                    f"Timeout must be a positive number of minutes, got {request.timeout_minutes}"
                )

            custom = parse_custom_rule(request.custom_domain) if request.custom_domain else None
            return self._resolver.resolve(request.source, request.target, custom)
        except MigrationError as e:
            e.stage = MigrationState.VALIDATING
            raise

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, request: MigrationRequest) -> MigrationResult:
        """
        Execute the migration.

        Args:
            request: What to migrate and how.

        Returns:
            MigrationResult in state DONE or CANCELLED.

        Raises:
            MigrationError: The fatal error that ended the run, with its
                stage set.
        """
        rules = self.validate_request(request)

        started_at = self._clock()
        started = time.monotonic()
        effector = create_effector(request.dry_run)
        base_dir = Path(request.work_dir) if request.work_dir else Path(tempfile.gettempdir())
        run = MigrationRun(
            tenant_id=request.tenant_id,
            source=request.source,
            target=request.target,
            started_at=started_at,
            work_dir=run_directory(base_dir, started_at),
            dry_run=request.dry_run,
        )
        result = MigrationResult(run=run, state=run.state)
        timeout = request.timeout_minutes or self._settings.default_timeout_minutes

        logger.info(
            "%sMigrating site %d from %s to %s",
            "[dry-run] " if request.dry_run else "",
            run.tenant_id,
            run.source.value,
            run.target.value,
        )

        try:
            with self._stage(run, MigrationState.VALIDATING):
                diagnostics = await self._validate(run, request)
                if not await self._confirmed(run, request, rules):
                    self._transition(run, MigrationState.CANCELLED)
                    logger.info("Migration cancelled by operator")
                    await self._reset_staging_quietly(run, effector)
                    result.state = run.state
                    result.duration_seconds = time.monotonic() - started
                    return result

            with self._stage(run, MigrationState.EXPORTING_SOURCE):
                initial = await self._export(
                    effector,
                    run,
                    request,
                    request.source,
                    ArtifactPurpose.INITIAL_EXPORT,
                    timeout,
                    planned_tables=len(diagnostics.tables),
                )

            with self._stage(run, MigrationState.IMPORTING_STAGING):
                await effector.perform(
                    "reset the staging database",
                    lambda: self._staging().ensure_clean(),
                )
                await effector.perform(
                    f"import {initial.file_name} into staging",
                    lambda: self._importer.import_file(
                        initial.path, Environment.STAGING, timeout, tenant_id=run.tenant_id
                    ),
                )

            with self._stage(run, MigrationState.REWRITING):
                for rule in rules:
                    logger.debug("  %s rule: %s", rule.kind, rule)
                result.rewrite = await effector.perform(
                    f"apply {len(rules)} rewrite rules to staging",
                    lambda: self._search_replace().apply(
                        Environment.STAGING,
                        rules,
                        run.tenant_id,
                        request.verbose,
                        include_homepage=request.include_homepage,
                    ),
                    planned=RewriteReport(rules_applied=len(rules)),
                )

            if request.skip_backup:
                message = (
                    f"Target backup skipped (--skip-backup): {run.target.value} tables for "
                    f"site {run.tenant_id} will be overwritten without a backup"
                )
                logger.warning(message)
                run.warn(message)
            else:
                with self._stage(run, MigrationState.BACKING_UP_TARGET):
                    await self._backup_target(effector, run, request, timeout)

            with self._stage(run, MigrationState.EXPORTING_STAGING):
                migrated = await self._export(
                    effector,
                    run,
                    request,
                    Environment.STAGING,
                    ArtifactPurpose.MIGRATED_EXPORT,
                    timeout,
                    planned_tables=len(diagnostics.tables),
                )

            with self._stage(run, MigrationState.IMPORTING_TARGET):
                await effector.perform(
                    f"import {migrated.file_name} into {run.target.value}",
                    lambda: self._importer.import_file(
                        migrated.path, run.target, timeout, tenant_id=run.tenant_id
                    ),
                )

            if request.sync_files:
                with self._stage(run, MigrationState.SYNCING_FILES):
                    result.file_sync = await self._sync_files(effector, run)

            keep_files = request.keep_files
            with self._stage(run, MigrationState.ARCHIVING):
                metadata = ArchiveMetadata.for_run(run)
                archival = self._archival_for(request)
                try:
                    result.archive = await effector.perform(
                        f"archive {len(run.artifacts)} artifacts",
                        lambda: archival.archive(run.artifacts, metadata, request.verbose),
                    )
                except ArchivalError as e:
                    keep_files = True
                    run.warn(f"{e}. Artifacts retained in {run.work_dir}")
                    logger.error("%s", e)
                else:
                    if result.archive is not None:
                        for failure in result.archive.failures:
                            run.warn(failure)

            with self._stage(run, MigrationState.CLEANING_UP):
                failures = await effector.perform(
                    "reset the staging database"
                    + ("" if keep_files else f" and remove {run.work_dir}"),
                    lambda: self._cleanup().cleanup(run, keep_files),
                    planned=[],
                )
                for failure in failures or []:
                    run.warn(str(failure))

            self._transition(run, MigrationState.DONE)
        except MigrationError as e:
            await self._fail(run, e, effector)
            raise
        except Exception as e:
            error = UnexpectedStageError(e, tenant_id=run.tenant_id)
            await self._fail(run, error, effector)
            raise error from e

        result.state = run.state
        result.duration_seconds = time.monotonic() - started
        logger.info(
            "%sMigration of site %d completed in %.1fs",
            "[dry-run] " if request.dry_run else "",
            run.tenant_id,
            result.duration_seconds,
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _validate(self, run: MigrationRun, request: MigrationRequest) -> Diagnostics:
        diagnostics = await self._preflight.validate(
            run.tenant_id,
            run.source,
            run.target,
            include_homepage=request.include_homepage,
            skip_s3=request.skip_s3,
            sync_files=request.sync_files,
            strict=not request.dry_run,
        )
        run.warnings.extend(diagnostics.warnings)
        for finding in diagnostics.fatal:
            run.warn(f"Preflight would fail: {finding}")

        if self._settings.has_database(run.source):
            run.site_name = await self._databases.get(run.source).site_name(run.tenant_id)
        else:
            run.site_name = f"site{run.tenant_id}"
        logger.info("Site name: %s", run.site_name)
        return diagnostics

    async def _confirmed(
        self,
        run: MigrationRun,
        request: MigrationRequest,
        rules: list[RewriteRule],
    ) -> bool:
        if request.force or request.dry_run or self._confirm is None:
            return True
        # The callback may block on terminal input.
        return await asyncio.to_thread(self._confirm, run, rules)

    async def _export(
        self,
        effector: Effector,
        run: MigrationRun,
        request: MigrationRequest,
        environment: Environment,
        purpose: ArtifactPurpose,
        timeout: float,
        *,
        planned_tables: int = 0,
    ) -> MigrationArtifact:
        # The migrated export is named for the environment it is headed to.
        label = run.target if environment == Environment.STAGING else environment
        path = run.work_dir / artifact_file_name(
            run.display_name, run.tenant_id, label, purpose, run.started_at
        )
        export = await effector.perform(
            f"export site {run.tenant_id} tables from {environment.value} to {path}",
            lambda: self._exporter.export(
                run.tenant_id,
                environment,
                path,
                timeout,
                include_homepage=request.include_homepage,
            ),
            planned=ExportResult(path=path, table_count=planned_tables, byte_size=0),
        )
        assert export is not None
        artifact = MigrationArtifact(
            path=export.path,
            environment=label,
            purpose=purpose,
            table_count=export.table_count,
            byte_size=export.byte_size,
        )
        run.artifacts.append(artifact)
        return artifact

    async def _backup_target(
        self,
        effector: Effector,
        run: MigrationRun,
        request: MigrationRequest,
        timeout: float,
    ) -> None:
        try:
            await self._export(
                effector, run, request, run.target, ArtifactPurpose.BACKUP_EXPORT, timeout
            )
        except TenantNotFoundError:
            message = (
                f"Site {run.tenant_id} has no tables in {run.target.value}; "
                "nothing to back up"
            )
            logger.warning(message)
            run.warn(message)

    async def _sync_files(self, effector: Effector, run: MigrationRun) -> FileSyncResult:
        file_sync = self._file_sync_service()
        try:
            outcome = await effector.perform(
                f"sync uploaded files for site {run.tenant_id} "
                f"from {run.source.value} to {run.target.value}",
                lambda: file_sync.sync(run.tenant_id, run.source, run.target),
                planned=FileSyncResult(success=True, files_transferred=0, message="dry run"),
            )
        except FileSyncFailure as e:
            run.warn(f"File sync failed: {e.message}")
            return FileSyncResult(success=False, files_transferred=0, message=e.message)
        assert outcome is not None
        return outcome

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, run: MigrationRun, target: MigrationState) -> None:
        if run.state == target:
            return
        if not run.state.can_transition_to(target):
            raise InvalidStateTransitionError(run.state, target)
        logger.debug("Run state %s -> %s", run.state.value, target.value)
        run.state = target

    @contextlib.contextmanager
    def _stage(self, run: MigrationRun, state: MigrationState) -> Iterator[None]:
        self._transition(run, state)
        logger.info("Step: %s", state.label)
        with self._tracer.span(
            f"sitemigrate.stage.{state.value}",
            {
                ATTR_TENANT_ID: run.tenant_id,
                ATTR_SOURCE_ENV: run.source.value,
                ATTR_TARGET_ENV: run.target.value,
                ATTR_STAGE: state.value,
                ATTR_DRY_RUN: run.dry_run,
            },
        ):
            yield

    async def _fail(self, run: MigrationRun, error: MigrationError, effector: Effector) -> None:
        failed_in = run.state
        if error.stage is None:
            error.stage = failed_in
        run.state = MigrationState.FAILED

        logger.log(
            error.severity.log_level,
            "Migration failed during %s: %s",
            error.stage.label,
            error.message,
        )
        await self._reset_staging_quietly(run, effector)

        if run.work_dir.exists():
            logger.info("Migration files retained for inspection in %s", run.work_dir)

    async def _reset_staging_quietly(self, run: MigrationRun, effector: Effector) -> None:
        """Best-effort staging reset after a failed or cancelled run."""
        if effector.dry_run:
            return
        try:
            failure = await self._cleanup().reset_staging()
        except MigrationError as e:
            failure = e
        if failure is not None:
            run.warn(f"Staging reset did not complete: {failure}")


__all__ = [
    "ConfirmCallback",
    "MigrationOrchestrator",
    "MigrationRequest",
]
