"""
Unit tests for the sitemigrate exception hierarchy.

Tests cover:
- Inheritance (what callers can catch together)
- Error classification and recoverability
- Context attributes and to_dict()
"""

from __future__ import annotations

import pytest

from sitemigrate.exceptions import (
    ArchivalError,
    ArchivalFailure,
    CleanupFailure,
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
    TableImportError,
    TenantNotFoundError,
    UnexpectedStageError,
    ValidationError,
)
from sitemigrate.models import MigrationState


class TestHierarchy:
    """Tests for exception inheritance."""

    @pytest.mark.parametrize(
        "error",
        [
            InvalidEnvironmentError("qa"),
            InvalidCustomRuleError("a:b:c"),
            MissingConfigurationError("prod"),
        ],
    )
    def test_validation_errors(self, error: MigrationError) -> None:
        """Test input errors share the ValidationError base."""
        assert isinstance(error, ValidationError)
        assert isinstance(error, MigrationError)

    def test_export_errors_share_base(self) -> None:
        """Test timeout and process failures are both ExportError."""
        timeout = ExportTimeoutError(
            tenant_id=43, environment="prod", output_path="/w/a.sql", timeout_minutes=20
        )
        process = ExportProcessError(
            tenant_id=43, environment="prod", output_path="/w/a.sql", exit_code=2, stderr="x"
        )
        assert isinstance(timeout, ExportError)
        assert isinstance(process, ExportError)

    def test_import_errors_share_base(self) -> None:
        """Test timeout and process failures are both TableImportError."""
        timeout = ImportTimeoutError(environment="pprd", source_path="/w/a.sql", timeout_minutes=5)
        process = ImportProcessError(
            environment="pprd", source_path="/w/a.sql", exit_code=1, stderr="denied"
        )
        assert isinstance(timeout, TableImportError)
        assert isinstance(process, TableImportError)


class TestClassification:
    """Tests for error classification."""

    @pytest.mark.parametrize(
        "error",
        [
            ArchivalFailure("s3", "no bucket configured"),
            ArchivalError([ArchivalFailure("s3", "down")]),
            FileSyncFailure("bucket missing"),
            CleanupFailure("could not delete", path="/w/a.sql"),
        ],
    )
    def test_side_step_errors_are_recoverable(self, error: MigrationError) -> None:
        """Test archival, sync and cleanup problems never abort a run."""
        assert error.recoverable
        assert not error.is_fatal
        assert error.classification.recoverability == ErrorRecoverability.RECOVERABLE

    @pytest.mark.parametrize(
        "error",
        [
            TenantNotFoundError(43, "prod"),
            ExportTimeoutError(
                tenant_id=43, environment="prod", output_path="/w/a.sql", timeout_minutes=20
            ),
            InvalidStateTransitionError(MigrationState.DONE, MigrationState.REWRITING),
            UnexpectedStageError(RuntimeError("boom")),
        ],
    )
    def test_pipeline_errors_are_fatal(self, error: MigrationError) -> None:
        assert error.is_fatal

    def test_archival_failure_is_a_warning(self) -> None:
        assert ArchivalFailure("s3", "down").severity == ErrorSeverity.WARNING


class TestContext:
    """Tests for context attributes and formatting."""

    def test_unexpected_error_names_its_cause(self) -> None:
        cause = ConnectionResetError("peer closed")
        error = UnexpectedStageError(cause, tenant_id=43)
        assert error.cause is cause
        assert error.message == "ConnectionResetError: peer closed"
        assert error.severity == ErrorSeverity.CRITICAL

    def test_tenant_not_found_message(self) -> None:
        error = TenantNotFoundError(43, "prod")
        assert error.message == "Site 43 not found in prod environment"
        assert error.tenant_id == 43
        assert "tenant_id=43" in str(error)

    def test_export_timeout_context(self) -> None:
        """Test the timeout and output path are kept."""
        error = ExportTimeoutError(
            tenant_id=43, environment="prod", output_path="/w/a.sql", timeout_minutes=20
        )
        assert error.timeout_minutes == 20
        assert error.output_path == "/w/a.sql"
        assert "20" in error.message

    def test_import_process_error_keeps_stderr(self) -> None:
        error = ImportProcessError(
            environment="pprd", source_path="/w/a.sql", exit_code=1, stderr="Access denied"
        )
        assert error.exit_code == 1
        assert "Access denied" in error.message

    def test_archival_error_lists_failures(self) -> None:
        """Test every sink failure appears in the message."""
        error = ArchivalError(
            [ArchivalFailure("s3", "no bucket configured"), ArchivalFailure("local", "disk full")]
        )
        assert "no bucket configured" in error.message
        assert "disk full" in error.message
        assert len(error.failures) == 2

    def test_stage_is_settable(self) -> None:
        """Test the orchestrator can attach the stage afterwards."""
        error = TenantNotFoundError(43, "prod")
        assert error.stage is None
        error.stage = MigrationState.EXPORTING_SOURCE
        assert error.to_dict()["stage"] == "exporting_source"

    def test_to_dict(self) -> None:
        """Test structured serialization."""
        error = LockAcquisitionError("/tmp/staging.lock", "held by another migration (pid 7)")
        data = error.to_dict()
        assert data["error_code"] == "LOCK_HELD"
        assert data["suggested_action"]
        assert data["classification"]["category"] == "staging"

    def test_explicit_suggested_action_wins(self) -> None:
        error = InvalidEnvironmentError("qa")
        assert error.to_dict()["suggested_action"] == "Use one of: dev, uat, pprd, prod"
