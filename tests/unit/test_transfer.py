"""
Unit tests for TableExporter and TableImporter.

Tests cover:
- Export scoped to the tenant's tables
- Export failures (unknown tenant, timeout, non-zero exit, missing file,
  unreachable database, unwritable destination)
- Import success and table counting
- Import failures (missing file, timeout, non-zero exit, runner OSError)
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from sitemigrate.commands import ContainerCommandBuilder
from sitemigrate.config import Settings
from sitemigrate.database import DatabaseHandle, DatabaseRegistry
from sitemigrate.exceptions import (
    ExportProcessError,
    ExportTimeoutError,
    ImportProcessError,
    ImportTimeoutError,
    TableImportError,
    TenantNotFoundError,
)
from sitemigrate.models import Environment
from sitemigrate.observability import MockTracer
from sitemigrate.transfer import TableExporter, TableImporter, count_create_tables
from tests.fixtures import FakeCommandRunner, create_network_tables, create_site, post_content


@pytest.fixture
def prod_path(sqlite_paths: dict[Environment, Path]) -> Path:
    path = sqlite_paths[Environment.PROD]
    create_network_tables(path, {43: ("magazine.wfu.edu", "/")})
    create_site(path, 43, {1: "It's https://magazine.wfu.edu/x"}, "https://magazine.wfu.edu")
    create_site(path, 430, {1: "https://other.wfu.edu/"}, "https://other.wfu.edu")
    return path


@pytest.fixture
def exporter(
    databases: DatabaseRegistry,
    runner: FakeCommandRunner,
    commands: ContainerCommandBuilder,
    tracer: MockTracer,
) -> TableExporter:
    return TableExporter(databases, runner, commands, tracer)


@pytest.fixture
def importer(
    databases: DatabaseRegistry,
    runner: FakeCommandRunner,
    commands: ContainerCommandBuilder,
    tracer: MockTracer,
) -> TableImporter:
    return TableImporter(databases, runner, commands, tracer)


class TestCountCreateTables:
    def test_counts_statements_at_line_start(self, tmp_path: Path) -> None:
        """Test CREATE TABLE is counted only at the start of a line."""
        path = tmp_path / "dump.sql"
        path.write_text(
            "CREATE TABLE `a` (id int);\n"
            "  create table `b` (id int);\n"
            "INSERT INTO `a` VALUES ('CREATE TABLE in text');\n"
        )
        assert count_create_tables(path) == 2


class TestTableExporter:
    """Tests for TableExporter."""

    @pytest.mark.asyncio
    async def test_export_tenant_tables(
        self,
        exporter: TableExporter,
        runner: FakeCommandRunner,
        prod_path: Path,
        tmp_path: Path,
        tracer: MockTracer,
    ) -> None:
        """Test only wp_43_* tables are dumped into the destination file."""
        destination = tmp_path / "work" / "magazine-43-prod-initial-export.sql"

        result = await exporter.export(43, Environment.PROD, destination, 20)

        assert result.path == destination
        assert result.table_count == 2
        assert result.tables == ("wp_43_options", "wp_43_posts")
        assert result.byte_size == destination.stat().st_size > 0

        (call,) = runner.calls_to("mysqldump")
        assert call.argv[-3:] == ("prod_db", "wp_43_options", "wp_43_posts")
        assert call.stdout_path == destination
        assert call.timeout == 20 * 60
        assert call.env == {"MYSQL_PWD": "prod-secret"}
        assert "wp_430_posts" not in destination.read_text()
        assert "sitemigrate.export" in tracer.span_names

    @pytest.mark.asyncio
    async def test_unknown_tenant(
        self, exporter: TableExporter, runner: FakeCommandRunner, prod_path: Path, tmp_path: Path
    ) -> None:
        """Test a tenant without tables fails before running the dump."""
        with pytest.raises(TenantNotFoundError):
            await exporter.export(99, Environment.PROD, tmp_path / "x.sql", 20)
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_timeout(
        self, exporter: TableExporter, runner: FakeCommandRunner, prod_path: Path, tmp_path: Path
    ) -> None:
        runner.fail("mysqldump", timed_out=True)
        with pytest.raises(ExportTimeoutError) as exc_info:
            await exporter.export(43, Environment.PROD, tmp_path / "x.sql", 0.5)
        assert exc_info.value.timeout_minutes == 0.5
        assert exc_info.value.output_path == str(tmp_path / "x.sql")

    @pytest.mark.asyncio
    async def test_process_failure(
        self, exporter: TableExporter, runner: FakeCommandRunner, prod_path: Path, tmp_path: Path
    ) -> None:
        runner.fail("mysqldump", exit_code=2, stderr="mysqldump: Got error: 1045: Access denied")
        with pytest.raises(ExportProcessError) as exc_info:
            await exporter.export(43, Environment.PROD, tmp_path / "x.sql", 20)
        assert exc_info.value.exit_code == 2
        assert "Access denied" in exc_info.value.message
        assert exc_info.value.tenant_id == 43

    @pytest.mark.asyncio
    async def test_unreachable_database(
        self,
        settings: Settings,
        runner: FakeCommandRunner,
        commands: ContainerCommandBuilder,
        tmp_path: Path,
    ) -> None:
        """Test a connection error while listing tables is reported as an export failure."""
        missing = tmp_path / "missing" / "prod.db"
        handle = DatabaseHandle(
            Environment.PROD, create_async_engine(f"sqlite+aiosqlite:///{missing}")
        )
        exporter = TableExporter(
            DatabaseRegistry(settings, handles={Environment.PROD: handle}), runner, commands
        )

        try:
            with pytest.raises(ExportProcessError) as exc_info:
                await exporter.export(43, Environment.PROD, tmp_path / "x.sql", 20)
        finally:
            await handle.dispose()

        assert exc_info.value.exit_code is None
        assert "cannot list tables" in exc_info.value.message
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_unwritable_destination(
        self, exporter: TableExporter, runner: FakeCommandRunner, prod_path: Path, tmp_path: Path
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(ExportProcessError):
            await exporter.export(43, Environment.PROD, blocker / "run" / "x.sql", 20)
        assert runner.calls == []


class TestTableImporter:
    """Tests for TableImporter."""

    @pytest.mark.asyncio
    async def test_import_round_trip(
        self,
        exporter: TableExporter,
        importer: TableImporter,
        runner: FakeCommandRunner,
        prod_path: Path,
        sqlite_paths: dict[Environment, Path],
        tmp_path: Path,
    ) -> None:
        """Test an exported file loads into staging with its data intact."""
        artifact = tmp_path / "initial.sql"
        await exporter.export(43, Environment.PROD, artifact, 20)

        result = await importer.import_file(artifact, Environment.STAGING, 20, tenant_id=43)

        assert result.table_count == 2
        assert result.environment == Environment.STAGING
        (call,) = runner.calls_to("mysql")
        assert call.stdin_path == artifact
        assert call.argv[-1] == "staging_db"
        assert post_content(sqlite_paths[Environment.STAGING], 43, 1) == (
            "It's https://magazine.wfu.edu/x"
        )

    @pytest.mark.asyncio
    async def test_missing_file(
        self, importer: TableImporter, runner: FakeCommandRunner, tmp_path: Path
    ) -> None:
        with pytest.raises(TableImportError):
            await importer.import_file(tmp_path / "missing.sql", Environment.STAGING, 20)
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_timeout(
        self, importer: TableImporter, runner: FakeCommandRunner, tmp_path: Path
    ) -> None:
        artifact = tmp_path / "a.sql"
        artifact.write_text("CREATE TABLE t (id int);\n")
        runner.fail("mysql", timed_out=True)

        with pytest.raises(ImportTimeoutError) as exc_info:
            await importer.import_file(artifact, Environment.PPRD, 1, tenant_id=43)
        assert exc_info.value.environment == "pprd"

    @pytest.mark.asyncio
    async def test_process_failure(
        self, importer: TableImporter, runner: FakeCommandRunner, tmp_path: Path
    ) -> None:
        artifact = tmp_path / "a.sql"
        artifact.write_text("CREATE TABLE t (id int);\n")
        runner.fail("mysql", "pprd_db", exit_code=1, stderr="ERROR 1142: DROP denied")

        with pytest.raises(ImportProcessError) as exc_info:
            await importer.import_file(artifact, Environment.PPRD, 20)
        assert exc_info.value.source_path == str(artifact)
        assert "DROP denied" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_runner_os_error(
        self,
        importer: TableImporter,
        runner: FakeCommandRunner,
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
    ) -> None:
        artifact = tmp_path / "a.sql"
        artifact.write_text("CREATE TABLE t (id int);\n")
        monkeypatch.setattr(runner, "run", AsyncMock(side_effect=PermissionError("a.sql")))

        with pytest.raises(ImportProcessError) as exc_info:
            await importer.import_file(artifact, Environment.STAGING, 20, tenant_id=43)
        assert exc_info.value.exit_code is None
        assert exc_info.value.tenant_id == 43
