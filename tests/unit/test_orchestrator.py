"""
Tests for MigrationOrchestrator.

Each test runs the whole pipeline against one SQLite file per environment,
with FakeCommandRunner standing in for mysqldump and mysql.

Tests cover:
- A full prod -> pprd migration (rewrite, backup, archive, cleanup)
- Dry runs making no mutating calls
- Input validation before any external call
- Fatal stage failures: error stage, staging reset, retained artifacts
- Recoverable steps (skipped backup, archive fallback, file sync) as warnings
- Unexpected exceptions taking the same failure path
- Operator cancellation, including the staging reset
- Stage spans
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError
from sqlalchemy.ext.asyncio import create_async_engine

from sitemigrate.archival import ArchivalService, LocalArchiveSink
from sitemigrate.commands import ContainerCommandBuilder
from sitemigrate.config import Settings
from sitemigrate.database import DatabaseHandle, DatabaseRegistry
from sitemigrate.exceptions import (
    ExportProcessError,
    FileSyncFailure,
    ImportProcessError,
    InvalidCustomRuleError,
    InvalidEnvironmentError,
    RewriteError,
    TenantNotFoundError,
    UnexpectedStageError,
    UnsupportedPathError,
    ValidationError,
)
from sitemigrate.file_sync import S3FileSync
from sitemigrate.mapping import EnvironmentMappingResolver
from sitemigrate.models import ArtifactPurpose, Environment, FileSyncResult, MigrationState
from sitemigrate.observability import ATTR_STAGE, ATTR_TENANT_ID, MockTracer
from sitemigrate.orchestrator import MigrationOrchestrator, MigrationRequest
from sitemigrate.search_replace import SearchReplaceEngine
from tests.fixtures import (
    FakeCommandRunner,
    create_network_tables,
    create_site,
    option_value,
    post_content,
    table_names,
)

PROD = Environment.PROD
PPRD = Environment.PPRD
STARTED_AT = datetime(2025, 8, 5, 15, 56, 35)
RUN_DIR_NAME = "sitemigrate-2025-08-05T15-56-35"

PROD_POSTS = {
    1: "See https://magazine.wfu.edu/x and https://www.wfu.edu/about",
    2: '<img src="https://prod.wp.cdn.aws.wfu.edu/sites/43/a.png">',
}


@pytest.fixture
def prod_path(sqlite_paths: dict[Environment, Path]) -> Path:
    path = sqlite_paths[PROD]
    create_network_tables(path, {43: ("magazine.wfu.edu", "/"), 430: ("other.wfu.edu", "/")})
    create_site(path, 43, PROD_POSTS, "https://magazine.wfu.edu")
    create_site(path, 430, {1: "https://other.wfu.edu/"}, "https://other.wfu.edu")
    return path


@pytest.fixture
def pprd_path(sqlite_paths: dict[Environment, Path]) -> Path:
    path = sqlite_paths[PPRD]
    create_site(path, 43, {1: "old pprd content"}, "https://magazine.pprd.wfu.edu")
    return path


@pytest.fixture
def staging_path(sqlite_paths: dict[Environment, Path]) -> Path:
    return sqlite_paths[Environment.STAGING]


@pytest.fixture
def make_orchestrator(
    settings: Settings,
    databases: DatabaseRegistry,
    runner: FakeCommandRunner,
    commands: ContainerCommandBuilder,
    tracer: MockTracer,
) -> Callable[..., MigrationOrchestrator]:
    def factory(**overrides: Any) -> MigrationOrchestrator:
        run_settings = overrides.pop("settings", settings)
        options: dict[str, Any] = {
            "databases": databases,
            "runner": runner,
            "commands": commands,
            "tracer": tracer,
            "clock": lambda: STARTED_AT,
        }
        options.update(overrides)
        return MigrationOrchestrator(run_settings, **options)

    return factory


@pytest.fixture
def make_request(tmp_path: Path) -> Callable[..., MigrationRequest]:
    def factory(**overrides: Any) -> MigrationRequest:
        values: dict[str, Any] = {
            "tenant_id": 43,
            "source": PROD,
            "target": PPRD,
            "force": True,
            "work_dir": tmp_path / "work",
        }
        values.update(overrides)
        return MigrationRequest(**values)

    return factory


class TestFullMigration:
    """Tests for a complete prod -> pprd run."""

    @pytest.mark.asyncio
    async def test_prod_to_pprd(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        pprd_path: Path,
        staging_path: Path,
        settings: Settings,
        tmp_path: Path,
    ) -> None:
        """Test the target receives rewritten content and everything is archived."""
        result = await make_orchestrator().run(make_request())

        assert result.state == MigrationState.DONE
        assert result.exit_code == 0
        assert result.run.site_name == "magazine"

        assert post_content(pprd_path, 43, 1) == (
            "See https://magazine.pprd.wfu.edu/x and https://pprd.wfu.edu/about"
        )
        assert post_content(pprd_path, 43, 2) == (
            '<img src="https://pprd.wp.cdn.aws.wfu.edu/sites/43/a.png">'
        )
        assert option_value(pprd_path, 43, "siteurl") == "https://magazine.pprd.wfu.edu"
        assert post_content(prod_path, 43, 1) == PROD_POSTS[1]
        assert table_names(staging_path) == []

        assert [a.purpose for a in result.run.artifacts] == [
            ArtifactPurpose.INITIAL_EXPORT,
            ArtifactPurpose.BACKUP_EXPORT,
            ArtifactPurpose.MIGRATED_EXPORT,
        ]
        archive_dir = settings.backup_path / "2025-08-05T15-56-35"
        assert result.archive is not None
        assert result.archive.location == str(archive_dir)
        assert sorted(p.name for p in archive_dir.iterdir()) == [
            "magazine-43-pprd-backup-export-08-05-2025.sql",
            "magazine-43-pprd-migrated-export-08-05-2025.sql",
            "magazine-43-prod-initial-export-08-05-2025.sql",
            "migration-metadata.json",
        ]
        backup = (archive_dir / "magazine-43-pprd-backup-export-08-05-2025.sql").read_text()
        assert "old pprd content" in backup
        initial = (archive_dir / "magazine-43-prod-initial-export-08-05-2025.sql").read_text()
        assert "wp_430_" not in initial
        assert "wp_blogs" not in initial

        assert not (tmp_path / "work" / RUN_DIR_NAME).exists()
        assert any("s3 archival failed" in w for w in result.warnings)
        assert result.rewrite is not None
        assert result.rewrite.total_rows_updated > 0

    @pytest.mark.asyncio
    async def test_keep_files(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        pprd_path: Path,
        tmp_path: Path,
    ) -> None:
        result = await make_orchestrator().run(make_request(keep_files=True))

        assert result.state == MigrationState.DONE
        assert all(artifact.path.exists() for artifact in result.run.artifacts)
        assert result.run.work_dir == tmp_path / "work" / RUN_DIR_NAME

    @pytest.mark.asyncio
    async def test_target_without_tenant(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        sqlite_paths: dict[Environment, Path],
    ) -> None:
        """Test a site that does not yet exist in the target is created without a backup."""
        result = await make_orchestrator().run(make_request())

        assert result.state == MigrationState.DONE
        assert any("nothing to back up" in w for w in result.warnings)
        assert result.run.artifact_for(ArtifactPurpose.BACKUP_EXPORT) is None
        assert post_content(sqlite_paths[PPRD], 43, 1).startswith("See https://magazine.pprd")

    @pytest.mark.asyncio
    async def test_stage_spans(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        tracer: MockTracer,
        prod_path: Path,
        pprd_path: Path,
    ) -> None:
        await make_orchestrator().run(make_request())

        stages = [name for name in tracer.span_names if name.startswith("sitemigrate.stage.")]
        assert stages == [
            "sitemigrate.stage.validating",
            "sitemigrate.stage.exporting_source",
            "sitemigrate.stage.importing_staging",
            "sitemigrate.stage.rewriting",
            "sitemigrate.stage.backing_up_target",
            "sitemigrate.stage.exporting_staging",
            "sitemigrate.stage.importing_target",
            "sitemigrate.stage.archiving",
            "sitemigrate.stage.cleaning_up",
        ]
        attributes = dict(tracer.spans)["sitemigrate.stage.rewriting"]
        assert attributes is not None
        assert attributes[ATTR_TENANT_ID] == 43
        assert attributes[ATTR_STAGE] == "rewriting"


class TestDryRun:
    """Tests for dry-run mode."""

    @pytest.mark.asyncio
    async def test_no_mutating_calls(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
        prod_path: Path,
        pprd_path: Path,
        settings: Settings,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test a dry run reaches DONE without touching anything."""
        caplog.set_level(logging.INFO)
        confirm = MagicMock(return_value=False)

        result = await make_orchestrator(confirm=confirm).run(
            make_request(dry_run=True, force=False)
        )

        assert result.state == MigrationState.DONE
        assert runner.mutating_calls == []
        confirm.assert_not_called()
        assert post_content(pprd_path, 43, 1) == "old pprd content"
        assert not (tmp_path / "work").exists()
        assert not settings.backup_path.exists()
        assert result.archive is None

        assert [a.file_name for a in result.run.artifacts] == [
            "magazine-43-prod-initial-export-08-05-2025.sql",
            "magazine-43-pprd-backup-export-08-05-2025.sql",
            "magazine-43-pprd-migrated-export-08-05-2025.sql",
        ]
        assert result.run.artifacts[0].table_count == 2
        assert "[dry-run] Would export site 43 tables from prod" in caplog.text
        assert "[dry-run] Would import magazine-43-pprd-migrated-export-08-05-2025.sql into pprd" in (
            caplog.text
        )

    @pytest.mark.asyncio
    async def test_preflight_findings_become_warnings(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
        prod_path: Path,
    ) -> None:
        """Test a dry run reports problems a real run would stop on."""
        runner.fail("info")

        result = await make_orchestrator().run(make_request(dry_run=True))

        assert result.state == MigrationState.DONE
        assert any(w.startswith("Preflight would fail:") for w in result.warnings)


class TestValidation:
    """Tests for input validation."""

    @pytest.mark.asyncio
    async def test_malformed_custom_rule(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
    ) -> None:
        with pytest.raises(InvalidCustomRuleError) as exc_info:
            await make_orchestrator().run(make_request(custom_domain="a:b:c"))

        assert exc_info.value.stage == MigrationState.VALIDATING
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_same_source_and_target(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
    ) -> None:
        with pytest.raises(InvalidEnvironmentError) as exc_info:
            await make_orchestrator().run(make_request(target=PROD))

        assert "must be different" in exc_info.value.message
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_staging_is_not_a_target(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
    ) -> None:
        with pytest.raises(InvalidEnvironmentError):
            await make_orchestrator().run(make_request(target=Environment.STAGING))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("field", "value"), [("tenant_id", 0), ("timeout_minutes", -5)])
    async def test_out_of_range_values(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        field: str,
        value: int,
    ) -> None:
        with pytest.raises(ValidationError):
            await make_orchestrator().run(make_request(**{field: value}))

    @pytest.mark.asyncio
    async def test_unsupported_path(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
    ) -> None:
        orchestrator = make_orchestrator(resolver=EnvironmentMappingResolver(table={}))
        with pytest.raises(UnsupportedPathError):
            await orchestrator.run(make_request())
        assert runner.calls == []

    def test_validate_request_returns_rules(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
    ) -> None:
        rules = make_orchestrator().validate_request(
            make_request(custom_domain="magazine.pprd.wfu.edu:preview.wfu.edu")
        )
        assert rules[0].match == ".wfu.edu"
        assert rules[-1].kind == "custom"


class TestFailures:
    """Tests for fatal stage failures."""

    @pytest.mark.asyncio
    async def test_target_import_failure(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
        prod_path: Path,
        pprd_path: Path,
        staging_path: Path,
        tmp_path: Path,
    ) -> None:
        """Test staging is emptied and artifacts are kept when the last import fails."""
        runner.fail("mysql", "pprd_db", stderr="ERROR 1045 (28000): Access denied")

        with pytest.raises(ImportProcessError) as exc_info:
            await make_orchestrator().run(make_request())

        assert exc_info.value.stage == MigrationState.IMPORTING_TARGET
        assert table_names(staging_path) == []
        run_dir = tmp_path / "work" / RUN_DIR_NAME
        assert len(list(run_dir.glob("*.sql"))) == 3
        assert post_content(pprd_path, 43, 1) == "old pprd content"

    @pytest.mark.asyncio
    async def test_source_export_failure(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
        prod_path: Path,
        pprd_path: Path,
    ) -> None:
        runner.fail("mysqldump", "prod_db", exit_code=2)

        with pytest.raises(ExportProcessError) as exc_info:
            await make_orchestrator().run(make_request())

        assert exc_info.value.stage == MigrationState.EXPORTING_SOURCE
        assert runner.calls_to("mysql") == []

    @pytest.mark.asyncio
    async def test_preflight_failure_resets_staging(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        staging_path: Path,
    ) -> None:
        """Test leftovers from an interrupted run are cleared even on early failure."""
        create_site(staging_path, 12, {1: "x"}, "https://a.wfu.edu")

        with pytest.raises(TenantNotFoundError) as exc_info:
            await make_orchestrator().run(make_request(tenant_id=99))

        assert exc_info.value.stage == MigrationState.VALIDATING
        assert table_names(staging_path) == []

    @pytest.mark.asyncio
    async def test_rewrite_failure(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        monkeypatch: pytest.MonkeyPatch,
        prod_path: Path,
        pprd_path: Path,
        staging_path: Path,
    ) -> None:
        """Test the half-rewritten staging copy is discarded."""
        monkeypatch.setattr(
            SearchReplaceEngine,
            "apply",
            AsyncMock(
                side_effect=RewriteError("database is locked", tenant_id=43, table="wp_43_posts")
            ),
        )

        with pytest.raises(RewriteError) as exc_info:
            await make_orchestrator().run(make_request())

        assert exc_info.value.stage == MigrationState.REWRITING
        assert table_names(staging_path) == []
        assert post_content(pprd_path, 43, 1) == "old pprd content"

    @pytest.mark.asyncio
    async def test_backup_export_failure(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
        prod_path: Path,
        pprd_path: Path,
        staging_path: Path,
    ) -> None:
        runner.fail("mysqldump", "pprd_db", stderr="mysqldump: Got error: 2013: Lost connection")

        with pytest.raises(ExportProcessError) as exc_info:
            await make_orchestrator().run(make_request())

        assert exc_info.value.stage == MigrationState.BACKING_UP_TARGET
        assert "Lost connection" in exc_info.value.message
        assert table_names(staging_path) == []
        assert post_content(pprd_path, 43, 1) == "old pprd content"

    @pytest.mark.asyncio
    async def test_unreachable_target_during_backup(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        settings: Settings,
        databases: DatabaseRegistry,
        prod_path: Path,
        staging_path: Path,
        tmp_path: Path,
    ) -> None:
        """Test a database error from the target becomes a staged export failure."""
        missing = tmp_path / "missing" / "pprd.db"
        unreachable = DatabaseHandle(PPRD, create_async_engine(f"sqlite+aiosqlite:///{missing}"))
        handles = {env: databases.get(env) for env in Environment if env != PPRD}
        handles[PPRD] = unreachable
        registry = DatabaseRegistry(settings, handles=handles)

        try:
            with pytest.raises(ExportProcessError) as exc_info:
                await make_orchestrator(databases=registry).run(make_request())
        finally:
            await unreachable.dispose()

        assert exc_info.value.stage == MigrationState.BACKING_UP_TARGET
        assert "cannot list tables" in exc_info.value.message
        assert table_names(staging_path) == []

    @pytest.mark.asyncio
    async def test_unexpected_exception(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        monkeypatch: pytest.MonkeyPatch,
        prod_path: Path,
        pprd_path: Path,
        staging_path: Path,
    ) -> None:
        """Test a non-migration exception is wrapped, staged and cleaned up after."""
        cause = RuntimeError("connection reset by peer")
        monkeypatch.setattr(SearchReplaceEngine, "apply", AsyncMock(side_effect=cause))

        with pytest.raises(UnexpectedStageError) as exc_info:
            await make_orchestrator().run(make_request())

        assert exc_info.value.stage == MigrationState.REWRITING
        assert exc_info.value.__cause__ is cause
        assert exc_info.value.message == "RuntimeError: connection reset by peer"
        assert table_names(staging_path) == []

    @pytest.mark.asyncio
    async def test_failure_logged_at_error_severity(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
        prod_path: Path,
        pprd_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test a failed target import is logged as critical."""
        runner.fail("mysql", "pprd_db")

        with pytest.raises(ImportProcessError):
            await make_orchestrator().run(make_request())

        assert any(
            r.levelno == logging.CRITICAL
            and r.getMessage().startswith("Migration failed during importing target")
            for r in caplog.records
        )


class TestRecoverableSteps:
    """Tests for steps whose failure only produces warnings."""

    @pytest.mark.asyncio
    async def test_skip_backup(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        tracer: MockTracer,
        prod_path: Path,
        pprd_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        result = await make_orchestrator().run(make_request(skip_backup=True))

        assert result.state == MigrationState.DONE
        assert any(w.startswith("Target backup skipped (--skip-backup)") for w in result.warnings)
        assert result.run.artifact_for(ArtifactPurpose.BACKUP_EXPORT) is None
        assert "sitemigrate.stage.backing_up_target" not in tracer.span_names
        assert any(
            r.levelno == logging.WARNING and "Target backup skipped" in r.getMessage()
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_archive_falls_back_to_local(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        make_settings: Callable[..., Settings],
        prod_path: Path,
        pprd_path: Path,
    ) -> None:
        """Test an unreachable bucket still ends with a local archive."""
        denied = ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "PutObject")
        client = MagicMock()
        client.head_bucket.side_effect = denied
        client.upload_file.side_effect = denied
        settings = make_settings(s3={"bucket": "archive-bucket"})

        result = await make_orchestrator(settings=settings, s3_client=client).run(make_request())

        assert result.state == MigrationState.DONE
        assert result.archive is not None
        assert result.archive.backend == "local"
        assert result.archive.location == str(settings.backup_path / "2025-08-05T15-56-35")
        assert any("not reachable" in w for w in result.warnings)
        assert any("s3 archival failed" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_archive_failure_keeps_files(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        pprd_path: Path,
        staging_path: Path,
        tmp_path: Path,
    ) -> None:
        """Test the work directory survives when no archive backend worked."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        archival = ArchivalService([LocalArchiveSink(blocker)])

        result = await make_orchestrator(archival=archival).run(make_request())

        assert result.state == MigrationState.DONE
        assert result.archive is None
        assert any("All archive backends failed" in w for w in result.warnings)
        assert len(list((tmp_path / "work" / RUN_DIR_NAME).glob("*.sql"))) == 3
        assert table_names(staging_path) == []

    @pytest.mark.asyncio
    async def test_file_sync(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        tracer: MockTracer,
        prod_path: Path,
        pprd_path: Path,
    ) -> None:
        file_sync = MagicMock(spec=S3FileSync)
        file_sync.check_access = AsyncMock()
        file_sync.sync = AsyncMock(
            return_value=FileSyncResult(True, 3, "Copied 3 of 3 objects")
        )

        result = await make_orchestrator(file_sync=file_sync).run(make_request(sync_files=True))

        assert result.file_sync is not None
        assert result.file_sync.files_transferred == 3
        file_sync.sync.assert_awaited_once_with(43, PROD, PPRD)
        assert "sitemigrate.stage.syncing_files" in tracer.span_names

    @pytest.mark.asyncio
    async def test_file_sync_failure(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        pprd_path: Path,
    ) -> None:
        """Test a failed asset sync does not fail the run."""
        file_sync = MagicMock(spec=S3FileSync)
        file_sync.check_access = AsyncMock()
        file_sync.sync = AsyncMock(side_effect=FileSyncFailure("SlowDown", tenant_id=43))

        result = await make_orchestrator(file_sync=file_sync).run(make_request(sync_files=True))

        assert result.state == MigrationState.DONE
        assert result.file_sync is not None
        assert not result.file_sync.success
        assert "File sync failed: SlowDown" in result.warnings


class TestConfirmation:
    """Tests for the operator confirmation."""

    @pytest.mark.asyncio
    async def test_declined(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        runner: FakeCommandRunner,
        prod_path: Path,
        staging_path: Path,
    ) -> None:
        """Test a declined prompt cancels the run and still empties staging."""
        create_site(staging_path, 12, {1: "x"}, "https://a.wfu.edu")
        confirm = MagicMock(return_value=False)

        result = await make_orchestrator(confirm=confirm).run(make_request(force=False))

        assert result.state == MigrationState.CANCELLED
        assert result.exit_code == 0
        assert runner.mutating_calls == []
        assert table_names(staging_path) == []
        run, rules = confirm.call_args.args
        assert run.site_name == "magazine"
        assert len(rules) == 8

    @pytest.mark.asyncio
    async def test_prompt_runs_off_the_event_loop(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        pprd_path: Path,
    ) -> None:
        prompt_threads: list[threading.Thread] = []

        def confirm(run: Any, rules: Any) -> bool:
            prompt_threads.append(threading.current_thread())
            return True

        result = await make_orchestrator(confirm=confirm).run(make_request(force=False))

        assert result.state == MigrationState.DONE
        assert prompt_threads
        assert prompt_threads[0] is not threading.current_thread()

    @pytest.mark.asyncio
    async def test_force_skips_prompt(
        self,
        make_orchestrator: Callable[..., MigrationOrchestrator],
        make_request: Callable[..., MigrationRequest],
        prod_path: Path,
        pprd_path: Path,
    ) -> None:
        confirm = MagicMock(return_value=False)
        result = await make_orchestrator(confirm=confirm).run(make_request(force=True))
        assert result.state == MigrationState.DONE
        confirm.assert_not_called()
