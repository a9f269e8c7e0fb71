"""
Data models for the site migration pipeline.

Models in this module:

Enums:
    - Environment: Deployment environments plus the virtual staging workspace
    - ArtifactPurpose: Why an SQL artifact was produced
    - MigrationState: Pipeline states and their allowed transitions

Core Models:
    - RewriteRule: One literal search-replace pair
    - MigrationArtifact: An SQL file produced by an export
    - MigrationRun: The unit of work for one (tenant, source, target) triple
    - ArchiveMetadata: Audit record written next to archived artifacts

Results:
    - ExportResult, ImportResult, RewriteReport, ArchiveResult,
      FileSyncResult, MigrationResult
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class Environment(Enum):
    """
    Named deployment environments.

    STAGING is the transformation workspace. It is never a migration
    source or target.
    """

    DEV = "dev"
    UAT = "uat"
    PPRD = "pprd"
    PROD = "prod"
    STAGING = "staging"

    @property
    def is_endpoint(self) -> bool:
        """True for environments that can be migrated from or to."""
        return self != Environment.STAGING

    @classmethod
    def endpoints(cls) -> list[Environment]:
        return [env for env in cls if env.is_endpoint]

    @classmethod
    def parse(cls, value: str) -> Environment:
        """
        Parse an environment name given on the command line.

        Raises:
            InvalidEnvironmentError: If the name is unknown or is 'staging'.
        """
        from sitemigrate.exceptions import InvalidEnvironmentError

        try:
            env = cls(value.strip().lower())
        except ValueError:
            raise InvalidEnvironmentError(
                value,
                f"Invalid environment '{value}'. Must be one of: "
                + ", ".join(e.value for e in cls.endpoints()),
            ) from None
        if not env.is_endpoint:
            raise InvalidEnvironmentError(
                value, "The staging database cannot be a migration source or target"
            )
        return env


class ArtifactPurpose(Enum):
    """Purpose tag of an exported SQL artifact."""

    INITIAL_EXPORT = "initial-export"
    """Tenant tables exported from the source environment."""

    BACKUP_EXPORT = "backup-export"
    """Tenant tables exported from the target before it is overwritten."""

    MIGRATED_EXPORT = "migrated-export"
    """Rewritten tenant tables exported from staging."""


class MigrationState(Enum):
    """
    Pipeline states.

    State machine transitions:
        VALIDATING -> EXPORTING_SOURCE -> IMPORTING_STAGING -> REWRITING
            -> [BACKING_UP_TARGET] -> EXPORTING_STAGING -> IMPORTING_TARGET
            -> [SYNCING_FILES] -> ARCHIVING -> CLEANING_UP -> DONE

        VALIDATING -> CANCELLED (operator declined confirmation)
        Any non-terminal state -> FAILED

    States in brackets are optional and may be skipped.
    """

    VALIDATING = "validating"
    EXPORTING_SOURCE = "exporting_source"
    IMPORTING_STAGING = "importing_staging"
    REWRITING = "rewriting"
    BACKING_UP_TARGET = "backing_up_target"
    EXPORTING_STAGING = "exporting_staging"
    IMPORTING_TARGET = "importing_target"
    SYNCING_FILES = "syncing_files"
    ARCHIVING = "archiving"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationState.DONE, MigrationState.FAILED, MigrationState.CANCELLED)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")

    def can_transition_to(self, target: MigrationState) -> bool:
        """
        Check if transition to target state is valid.

        Args:
            target: The state to transition to.

        Returns:
            True if the transition is valid.
        """
        if self.is_terminal:
            return False

        if target == MigrationState.FAILED:
            return True

        valid_transitions: dict[MigrationState, list[MigrationState]] = {
            MigrationState.VALIDATING: [
                MigrationState.EXPORTING_SOURCE,
                MigrationState.CANCELLED,
            ],
            MigrationState.EXPORTING_SOURCE: [MigrationState.IMPORTING_STAGING],
            MigrationState.IMPORTING_STAGING: [MigrationState.REWRITING],
            MigrationState.REWRITING: [
                MigrationState.BACKING_UP_TARGET,
                MigrationState.EXPORTING_STAGING,
            ],
            MigrationState.BACKING_UP_TARGET: [MigrationState.EXPORTING_STAGING],
            MigrationState.EXPORTING_STAGING: [MigrationState.IMPORTING_TARGET],
            MigrationState.IMPORTING_TARGET: [
                MigrationState.SYNCING_FILES,
                MigrationState.ARCHIVING,
            ],
            MigrationState.SYNCING_FILES: [MigrationState.ARCHIVING],
            MigrationState.ARCHIVING: [MigrationState.CLEANING_UP],
            MigrationState.CLEANING_UP: [MigrationState.DONE],
        }

        return target in valid_transitions.get(self, [])


@dataclass(frozen=True)
class RewriteRule:
    """
    One literal search-replace pair.

    Attributes:
        match: Literal text to find.
        replacement: Literal text to put in its place.
        kind: "url", "storage" or "custom".
    """

    match: str
    replacement: str
    kind: str = "url"

    def apply(self, text: str) -> str:
        return text.replace(self.match, self.replacement)

    def __str__(self) -> str:
        return f"{self.match!r} -> {self.replacement!r}"


@dataclass(frozen=True)
class ExportResult:
    """
    Result of a table export.

    Attributes:
        path: Artifact file written.
        table_count: Number of tables dumped.
        byte_size: Size of the artifact in bytes.
        tables: Names of the dumped tables.
    """

    path: Path
    table_count: int
    byte_size: int
    tables: tuple[str, ...] = ()

    @property
    def size_mb(self) -> float:
        return self.byte_size / 1024 / 1024


@dataclass(frozen=True)
class ImportResult:
    """
    Result of loading an artifact.

    Attributes:
        table_count: Number of CREATE TABLE statements in the artifact.
        environment: Destination that was loaded.
    """

    table_count: int
    environment: Environment


@dataclass
class RewriteReport:
    """
    Summary of a search-replace pass over staging.

    Attributes:
        tables: Tables that were scanned.
        rules_applied: Number of rules applied.
        rows_updated: Updated row count per rule, in rule order.
        skipped_tables: Tables excluded by the skip list.
    """

    tables: list[str] = field(default_factory=list)
    rules_applied: int = 0
    rows_updated: list[int] = field(default_factory=list)
    skipped_tables: list[str] = field(default_factory=list)

    @property
    def total_rows_updated(self) -> int:
        return sum(self.rows_updated)


@dataclass(frozen=True)
class MigrationArtifact:
    """
    An SQL file produced by an export step.

    Attributes:
        path: Location of the file on local disk.
        environment: Environment the tables were exported from. For the
            migrated export this is the target the file is destined for.
        purpose: Why the artifact was produced.
        table_count: Number of tables in the file.
        byte_size: File size in bytes.
    """

    path: Path
    environment: Environment
    purpose: ArtifactPurpose
    table_count: int = 0
    byte_size: int = 0

    @property
    def file_name(self) -> str:
        return self.path.name


@dataclass
class MigrationRun:
    """
    The unit of work for one (tenant, source, target) triple.

    Attributes:
        tenant_id: Site being migrated.
        source: Environment the site is copied from.
        target: Environment the site is copied to.
        started_at: When the run was created.
        work_dir: Directory holding the run's artifacts.
        site_name: Human-readable site name used in file names.
        state: Current pipeline state.
        artifacts: Artifacts produced so far, in production order.
        warnings: Recoverable problems reported during the run.
        dry_run: Whether mutating calls are suppressed.
    """

    tenant_id: int
    source: Environment
    target: Environment
    started_at: datetime
    work_dir: Path
    site_name: str = ""
    state: MigrationState = MigrationState.VALIDATING
    artifacts: list[MigrationArtifact] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def timestamp(self) -> str:
        """Run timestamp in the form 2025-08-08T15-56-35."""
        return self.started_at.strftime("%Y-%m-%dT%H-%M-%S")

    @property
    def display_name(self) -> str:
        return self.site_name or f"site{self.tenant_id}"

    def artifact_for(self, purpose: ArtifactPurpose) -> MigrationArtifact | None:
        for artifact in self.artifacts:
            if artifact.purpose == purpose:
                return artifact
        return None

    def warn(self, message: str) -> None:
        self.warnings.append(message)


class ArchiveMetadata(BaseModel):
    """
    Audit record stored alongside archived artifacts.

    The same shape is written whether the destination is object storage or
    the local backup directory.
    """

    model_config = ConfigDict(frozen=True)

    tenant: int
    source: str
    target: str
    timestamp: str
    site_name: str | None = None
    files: list[str] = Field(default_factory=list)
    initial_export: str | None = None
    backup_export: str | None = None
    migrated_export: str | None = None

    @classmethod
    def for_run(cls, run: MigrationRun) -> ArchiveMetadata:
        def name_of(purpose: ArtifactPurpose) -> str | None:
            artifact = run.artifact_for(purpose)
            return artifact.file_name if artifact else None

        return cls(
            tenant=run.tenant_id,
            source=run.source.value,
            target=run.target.value,
            timestamp=run.timestamp,
            site_name=run.site_name or None,
            files=[a.file_name for a in run.artifacts],
            initial_export=name_of(ArtifactPurpose.INITIAL_EXPORT),
            backup_export=name_of(ArtifactPurpose.BACKUP_EXPORT),
            migrated_export=name_of(ArtifactPurpose.MIGRATED_EXPORT),
        )


@dataclass(frozen=True)
class ArchiveResult:
    """
    Where archived artifacts ended up.

    Attributes:
        location: s3:// URI or local directory path. Never empty.
        files: File names stored, including the metadata record.
        backend: Name of the sink that stored them ("s3" or "local").
        failures: Why earlier sinks in the chain were passed over.
    """

    location: str
    files: tuple[str, ...]
    backend: str
    failures: tuple[str, ...] = ()

    @property
    def used_fallback(self) -> bool:
        return bool(self.failures)


@dataclass(frozen=True)
class FileSyncResult:
    """
    Outcome of the optional asset sync.

    Attributes:
        success: Whether the sync completed.
        files_transferred: Number of objects copied.
        message: Human-readable summary.
    """

    success: bool
    files_transferred: int
    message: str


@dataclass
class MigrationResult:
    """
    Final outcome of a migration run.

    Attributes:
        run: The run the result belongs to.
        state: Terminal state reached.
        archive: Where artifacts were archived, if archival ran.
        rewrite: Search-replace summary, if rewriting ran.
        file_sync: Asset sync summary, if requested.
        duration_seconds: Wall-clock duration.
    """

    run: MigrationRun
    state: MigrationState
    archive: ArchiveResult | None = None
    rewrite: RewriteReport | None = None
    file_sync: FileSyncResult | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state in (MigrationState.DONE, MigrationState.CANCELLED)

    @property
    def warnings(self) -> list[str]:
        return self.run.warnings

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1
