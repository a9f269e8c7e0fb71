"""
Exceptions for the sitemigrate migration pipeline.

Every error raised by the pipeline derives from MigrationError, so callers
can catch the whole family with one handler. Each class carries an
ErrorClassification describing how severe it is and whether the run can
continue past it.

Exception Hierarchy:
    MigrationError (base)
    +-- ValidationError
    |   +-- InvalidEnvironmentError
    |   +-- InvalidCustomRuleError
    |   +-- MissingConfigurationError
    +-- UnsupportedPathError
    +-- DependencyUnavailableError
    +-- TenantNotFoundError
    +-- ExportError
    |   +-- ExportTimeoutError
    |   +-- ExportProcessError
    +-- TableImportError
    |   +-- ImportTimeoutError
    |   +-- ImportProcessError
    +-- StagingError
    +-- RewriteError
    +-- ArchivalFailure
    +-- ArchivalError
    +-- FileSyncFailure
    +-- CleanupFailure
    +-- InvalidStateTransitionError
    +-- LockAcquisitionError

Fatal errors abort the pipeline (after a best-effort staging reset).
Recoverable errors (ArchivalFailure, ArchivalError, FileSyncFailure,
CleanupFailure) are absorbed where they occur and reported as warnings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sitemigrate.models import MigrationState


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Attributes:
        CRITICAL: The destination may be left in an indeterminate state.
        ERROR: The run cannot continue.
        WARNING: Degraded behaviour; the run continues.
        INFO: Informational condition, not a failure.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Attributes:
        RECOVERABLE: Absorbed by the component that raised it; the run
            continues and the condition is reported as a warning.
        FATAL: Aborts the run. Nothing is retried automatically.
    """

    RECOVERABLE = "recoverable"
    FATAL = "fatal"

    @property
    def should_abort(self) -> bool:
        """True only for FATAL errors."""
        return self == ErrorRecoverability.FATAL


@dataclass(frozen=True)
class ErrorClassification:
    """
    Rich metadata for error classification.

    Attributes:
        severity: The severity level of the error.
        recoverability: Whether the run can continue past the error.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        """
        Convert classification to dictionary for serialization.

        Returns:
            Dictionary representation of the classification.
        """
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        return result


class MigrationError(Exception):
    """
    Base exception for all migration-related errors.

    Attributes:
        message: Human-readable error description.
        tenant_id: The tenant involved, if applicable.
        stage: The pipeline state during which the error surfaced. Set by
            the orchestrator when the error crosses a stage boundary.
        recoverable: Whether the run can continue past this error.
        suggested_action: Suggested action for recovery.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review the migration log for details",
    )

    def __init__(
        self,
        message: str,
        *,
        tenant_id: int | None = None,
        stage: MigrationState | None = None,
        recoverable: bool = False,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.tenant_id = tenant_id
        self.stage = stage
        self.recoverable = recoverable
        self.suggested_action = suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        parts = [self.message]
        if self.tenant_id is not None:
            parts.append(f"tenant_id={self.tenant_id}")
        if self.recoverable:
            parts.append("(recoverable)")
        return " ".join(parts)

    @property
    def classification(self) -> ErrorClassification:
        """
        Get the error classification for this exception.

        Subclasses override _default_classification to provide
        specific classification metadata for their error type.
        """
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def is_fatal(self) -> bool:
        return self.classification.recoverability.should_abort

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "tenant_id": self.tenant_id,
            "stage": self.stage.value if self.stage else None,
            "error_code": self.error_code,
            "suggested_action": self.suggested_action or self.classification.suggested_action,
            "classification": self.classification.to_dict(),
        }


# =============================================================================
# Input validation
# =============================================================================


class ValidationError(MigrationError):
    """
    Raised when operator input is invalid.

    Validation happens before any external call, so nothing has been
    touched when this is raised.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="VALIDATION_ERROR",
        category="validation",
        suggested_action="Correct the command-line arguments and try again",
    )


class InvalidEnvironmentError(ValidationError):
    """
    Raised for an unknown environment name or a source equal to the target.

    Attributes:
        environment: The offending environment value.
    """

    def __init__(self, environment: str, reason: str | None = None) -> None:
        self.environment = environment
        super().__init__(
            reason or f"Invalid environment '{environment}'",
            suggested_action="Use one of: dev, uat, pprd, prod",
        )


class InvalidCustomRuleError(ValidationError):
    """
    Raised when a custom rewrite rule is not exactly 'literal:literal'.

    Attributes:
        raw_value: The rule text as supplied by the operator.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_CUSTOM_RULE",
        category="validation",
        suggested_action="Pass the custom domain as source:target with exactly one ':'",
    )

    def __init__(self, raw_value: str) -> None:
        self.raw_value = raw_value
        super().__init__(
            f"Custom domain must be in format source:target, got '{raw_value}'",
        )


class MissingConfigurationError(ValidationError):
    """
    Raised when a database connection descriptor is missing or incomplete.

    Attributes:
        section: Configuration section that is incomplete (e.g. "prod",
            "staging").
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MISSING_CONFIGURATION",
        category="configuration",
        suggested_action="Add the connection settings to the config file or SITEMIGRATE_* variables",
    )

    def __init__(self, section: str) -> None:
        self.section = section
        super().__init__(f"Database connection for '{section}' is not configured")


class UnsupportedPathError(MigrationError):
    """
    Raised when no rewrite-rule set is registered for a source/target pair.

    Attributes:
        source: Source environment name.
        target: Target environment name.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNSUPPORTED_PATH",
        category="validation",
        suggested_action="Run 'sitemigrate paths' to list supported migration paths",
    )

    def __init__(self, source: str, target: str) -> None:
        self.source = source
        self.target = target
        super().__init__(f"Migration path {source} -> {target} is not supported")


# =============================================================================
# Preflight
# =============================================================================


class DependencyUnavailableError(MigrationError):
    """
    Raised when required tooling (the container runtime) is missing.

    Attributes:
        dependency: Name of the missing tool.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="DEPENDENCY_UNAVAILABLE",
        category="preflight",
        suggested_action="Install and start the container runtime",
    )

    def __init__(self, dependency: str, detail: str) -> None:
        self.dependency = dependency
        super().__init__(f"{dependency} is not available: {detail}")


class TenantNotFoundError(MigrationError):
    """
    Raised when the tenant owns no tables in the source environment.

    Attributes:
        environment: Environment that was searched.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="TENANT_NOT_FOUND",
        category="preflight",
        suggested_action="Check the site id; pass --homepage to migrate the main site",
    )

    def __init__(self, tenant_id: int, environment: str) -> None:
        self.environment = environment
        super().__init__(
            f"Site {tenant_id} not found in {environment} environment",
            tenant_id=tenant_id,
        )


# =============================================================================
# Export / import
# =============================================================================


class ExportError(MigrationError):
    """
    Base class for export failures.

    A partially written dump is never imported, so every export failure is
    fatal.

    Attributes:
        environment: Environment being exported.
        output_path: Path of the artifact being written.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="EXPORT_ERROR",
        category="export",
        suggested_action="Inspect the partial artifact in the working directory and re-run",
    )

    def __init__(
        self,
        message: str,
        *,
        tenant_id: int,
        environment: str,
        output_path: str,
    ) -> None:
        self.environment = environment
        self.output_path = output_path
        super().__init__(message, tenant_id=tenant_id)


class ExportTimeoutError(ExportError):
    """
    Raised when the dump process exceeds its timeout.

    Attributes:
        timeout_minutes: The configured timeout.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="EXPORT_TIMEOUT",
        category="export",
        suggested_action="Re-run with a larger --timeout for large sites",
    )

    def __init__(
        self,
        *,
        tenant_id: int,
        environment: str,
        output_path: str,
        timeout_minutes: float,
    ) -> None:
        self.timeout_minutes = timeout_minutes
        super().__init__(
            f"Export from {environment} timed out after {timeout_minutes:g} minutes",
            tenant_id=tenant_id,
            environment=environment,
            output_path=output_path,
        )


class ExportProcessError(ExportError):
    """
    Raised when the dump process exits non-zero or produces no file.

    Attributes:
        exit_code: Process exit status (None if it never ran).
        stderr: Captured standard error.
    """

    def __init__(
        self,
        *,
        tenant_id: int,
        environment: str,
        output_path: str,
        exit_code: int | None,
        stderr: str,
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no error output"
        super().__init__(
            f"Export from {environment} failed (exit {exit_code}): {detail}",
            tenant_id=tenant_id,
            environment=environment,
            output_path=output_path,
        )


class TableImportError(MigrationError):
    """
    Base class for import failures.

    A failed import leaves the destination in an indeterminate state. It is
    reported, never retried, because a second attempt could apply DDL twice.

    Attributes:
        environment: Destination environment.
        source_path: Artifact being loaded.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="IMPORT_ERROR",
        category="import",
        suggested_action=(
            "The destination may be partially loaded. Restore it from the "
            "backup artifact before re-running"
        ),
    )

    def __init__(
        self,
        message: str,
        *,
        environment: str,
        source_path: str,
        tenant_id: int | None = None,
    ) -> None:
        self.environment = environment
        self.source_path = source_path
        super().__init__(message, tenant_id=tenant_id)


class ImportTimeoutError(TableImportError):
    """
    Raised when the restore process exceeds its timeout.

    Attributes:
        timeout_minutes: The configured timeout.
    """

    def __init__(
        self,
        *,
        environment: str,
        source_path: str,
        timeout_minutes: float,
        tenant_id: int | None = None,
    ) -> None:
        self.timeout_minutes = timeout_minutes
        super().__init__(
            f"Import into {environment} timed out after {timeout_minutes:g} minutes",
            environment=environment,
            source_path=source_path,
            tenant_id=tenant_id,
        )


class ImportProcessError(TableImportError):
    """
    Raised when the restore process exits non-zero.

    Attributes:
        exit_code: Process exit status.
        stderr: Captured standard error.
    """

    def __init__(
        self,
        *,
        environment: str,
        source_path: str,
        exit_code: int | None,
        stderr: str,
        tenant_id: int | None = None,
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no error output"
        super().__init__(
            f"Import into {environment} failed (exit {exit_code}): {detail}",
            environment=environment,
            source_path=source_path,
            tenant_id=tenant_id,
        )


# =============================================================================
# Staging and rewrite
# =============================================================================


class StagingError(MigrationError):
    """
    Raised when the staging database cannot be reset or is not empty
    immediately before the initial import.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="STAGING_ERROR",
        category="staging",
        suggested_action="Run 'sitemigrate reset-staging' and check the staging credentials",
    )


class RewriteError(MigrationError):
    """
    Raised when a database error interrupts search-replace on staging.

    Staging is left partially rewritten. It is discarded by cleanup and
    never promoted, so no further recovery is needed.

    Attributes:
        table: Table being rewritten when the failure happened.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="REWRITE_ERROR",
        category="rewrite",
        suggested_action="Check the staging database and re-run the migration",
    )

    def __init__(self, message: str, *, tenant_id: int, table: str | None = None) -> None:
        self.table = table
        super().__init__(message, tenant_id=tenant_id)


# =============================================================================
# Recoverable side steps
# =============================================================================


class ArchivalFailure(MigrationError):
    """
    Raised by an archive sink that could not store the artifacts.

    The archival service moves on to the next sink, so this never fails
    the run.

    Attributes:
        sink: Name of the sink that failed.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="ARCHIVAL_FAILURE",
        category="archival",
        suggested_action="Artifacts were archived to the next available backend",
    )

    def __init__(self, sink: str, reason: str) -> None:
        self.sink = sink
        self.reason = reason
        super().__init__(f"{sink} archival failed: {reason}", recoverable=True)


class ArchivalError(MigrationError):
    """
    Raised when every archive sink failed.

    The orchestrator records this as a warning and keeps the local
    artifacts in the working directory so that no copy is lost.

    Attributes:
        failures: The individual sink failures, in the order tried.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="ARCHIVAL_ERROR",
        category="archival",
        suggested_action="Copy the retained artifacts from the working directory manually",
    )

    def __init__(self, failures: list[ArchivalFailure]) -> None:
        self.failures = failures
        reasons = "; ".join(str(f) for f in failures) or "no sink configured"
        super().__init__(f"All archive backends failed: {reasons}", recoverable=True)


class FileSyncFailure(MigrationError):
    """Raised when the optional asset sync step fails."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="FILE_SYNC_FAILURE",
        category="file_sync",
        suggested_action="Re-run the asset sync separately once object storage is reachable",
    )

    def __init__(self, message: str, *, tenant_id: int | None = None) -> None:
        super().__init__(message, tenant_id=tenant_id, recoverable=True)


class CleanupFailure(MigrationError):
    """
    Raised when part of cleanup fails.

    Attributes:
        path: The file or directory that could not be removed, if any.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="CLEANUP_FAILURE",
        category="cleanup",
        suggested_action="Remove the leftover files manually or run 'sitemigrate reset-staging'",
    )

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        super().__init__(message, recoverable=True)


# =============================================================================
# Coordination
# =============================================================================


class InvalidStateTransitionError(MigrationError):
    """
    Raised when the orchestrator attempts a transition the state machine
    does not allow.

    Attributes:
        from_state: The current state.
        to_state: The requested state.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_STATE_TRANSITION",
        category="state",
        suggested_action="This indicates a bug in the pipeline; report it with the log",
    )

    def __init__(self, from_state: MigrationState, to_state: MigrationState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition: {from_state.value} -> {to_state.value}",
        )


class UnexpectedStageError(MigrationError):
    """
    Wraps an exception that is not a MigrationError so it can take the
    normal failure path and carry the stage it escaped from.

    Attributes:
        cause: The original exception.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNEXPECTED_ERROR",
        category="general",
        suggested_action="Check connectivity to the databases named in the log and re-run",
    )

    def __init__(self, cause: BaseException, *, tenant_id: int | None = None) -> None:
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}", tenant_id=tenant_id)


class LockAcquisitionError(MigrationError):
    """
    Raised when the staging lock is held by another run.

    Attributes:
        key: The lock path.
        timeout: The timeout value if timeout was the cause.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="LOCK_HELD",
        category="staging",
        suggested_action="Wait for the other migration to finish; the staging database is shared",
    )

    def __init__(self, key: str, reason: str, timeout: float | None = None) -> None:
        self.key = key
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock '{key}': {reason}")


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "MigrationError",
    "ValidationError",
    "InvalidEnvironmentError",
    "InvalidCustomRuleError",
    "MissingConfigurationError",
    "UnsupportedPathError",
    "DependencyUnavailableError",
    "TenantNotFoundError",
    "ExportError",
    "ExportTimeoutError",
    "ExportProcessError",
    "TableImportError",
    "ImportTimeoutError",
    "ImportProcessError",
    "StagingError",
    "RewriteError",
    "ArchivalFailure",
    "ArchivalError",
    "FileSyncFailure",
    "CleanupFailure",
    "InvalidStateTransitionError",
    "UnexpectedStageError",
    "LockAcquisitionError",
]
