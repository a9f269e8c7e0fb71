"""
sitemigrate - Move one WordPress multisite tenant between environments.

The pipeline exports the tenant's tables from the source database, loads
them into a shared staging database, rewrites environment-specific URLs
and storage references there, backs up and overwrites the target, and
archives every SQL artifact it produced.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sitemigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from sitemigrate.config import Settings, load_settings
from sitemigrate.exceptions import (
    ArchivalError,
    ArchivalFailure,
    CleanupFailure,
    DependencyUnavailableError,
    ErrorClassification,
    ErrorRecoverability,
    ErrorSeverity,
    ExportError,
    ExportProcessError,
    ExportTimeoutError,
    FileSyncFailure,
    ImportProcessError,
    ImportTimeoutError,
    InvalidCustomRuleError,
    InvalidEnvironmentError,
    InvalidStateTransitionError,
    LockAcquisitionError,
    MigrationError,
    MissingConfigurationError,
    RewriteError,
    StagingError,
    TableImportError,
    TenantNotFoundError,
    UnexpectedStageError,
    UnsupportedPathError,
    ValidationError,
)
from sitemigrate.mapping import EnvironmentMappingResolver, parse_custom_rule
from sitemigrate.models import (
    ArchiveMetadata,
    ArchiveResult,
    ArtifactPurpose,
    Environment,
    ExportResult,
    FileSyncResult,
    ImportResult,
    MigrationArtifact,
    MigrationResult,
    MigrationRun,
    MigrationState,
    RewriteReport,
    RewriteRule,
)
from sitemigrate.orchestrator import MigrationOrchestrator, MigrationRequest
from sitemigrate.staging import StagingLock

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "load_settings",
    # Orchestration
    "MigrationOrchestrator",
    "MigrationRequest",
    "EnvironmentMappingResolver",
    "StagingLock",
    "parse_custom_rule",
    # Models
    "ArchiveMetadata",
    "ArchiveResult",
    "ArtifactPurpose",
    "Environment",
    "ExportResult",
    "FileSyncResult",
    "ImportResult",
    "MigrationArtifact",
    "MigrationResult",
    "MigrationRun",
    "MigrationState",
    "RewriteReport",
    "RewriteRule",
    # Exceptions
    "ArchivalError",
    "ArchivalFailure",
    "CleanupFailure",
    "DependencyUnavailableError",
    "ErrorClassification",
    "ErrorRecoverability",
    "ErrorSeverity",
    "ExportError",
    "ExportProcessError",
    "ExportTimeoutError",
    "FileSyncFailure",
    "ImportProcessError",
    "ImportTimeoutError",
    "InvalidCustomRuleError",
    "InvalidEnvironmentError",
    "InvalidStateTransitionError",
    "LockAcquisitionError",
    "MigrationError",
    "MissingConfigurationError",
    "RewriteError",
    "StagingError",
    "TableImportError",
    "TenantNotFoundError",
    "UnexpectedStageError",
    "UnsupportedPathError",
    "ValidationError",
]
