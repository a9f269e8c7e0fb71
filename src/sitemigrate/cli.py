"""
Command-line entry point.

Commands:
    sitemigrate migrate <tenant> --from ENV --to ENV [options]
    sitemigrate paths
    sitemigrate reset-staging [--force]

Exit codes:
    0  Success, dry-run completion or operator cancellation
    1  A stage failed
    2  Invalid input or configuration
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError as SettingsValidationError

from sitemigrate import __version__
from sitemigrate.config import Settings, load_settings
from sitemigrate.database import DatabaseRegistry
from sitemigrate.exceptions import (
    MigrationError,
    UnsupportedPathError,
    ValidationError,
)
from sitemigrate.mapping import EnvironmentMappingResolver
from sitemigrate.models import Environment, MigrationResult, MigrationRun, RewriteRule
from sitemigrate.orchestrator import MigrationOrchestrator, MigrationRequest
from sitemigrate.staging import StagingDatabaseCoordinator, StagingLock

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(verbose: bool = False, log_file: str | Path | None = None) -> None:
    """Set up console logging and, optionally, a log file with the same format."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    if log_file:
        handler = logging.FileHandler(Path(log_file).expanduser())
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(handler)

    for noisy in ("botocore", "boto3", "s3transfer", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to config.toml")
    common.add_argument("--verbose", "-v", action="store_true", help="Log per-table detail")
    common.add_argument("--log-file", help="Also write log records to this file")

    parser = argparse.ArgumentParser(
        prog="sitemigrate",
        description="Migrate one WordPress multisite tenant between environments.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser(
        "migrate", parents=[common], help="Migrate a site between environments"
    )
    migrate.add_argument("tenant", type=int, help="Site (blog) ID to migrate")
    migrate.add_argument("--from", dest="source", required=True, help="Source environment")
    migrate.add_argument("--to", dest="target", required=True, help="Target environment")
    migrate.add_argument(
        "--dry-run", action="store_true", help="Show what would happen without changing anything"
    )
    migrate.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    migrate.add_argument(
        "--skip-backup", action="store_true", help="Do not back up the target before overwriting"
    )
    migrate.add_argument(
        "--skip-s3", action="store_true", help="Archive to the local backup directory only"
    )
    migrate.add_argument(
        "--sync-s3", dest="sync_files", action="store_true", help="Also sync uploaded files"
    )
    migrate.add_argument("--work-dir", type=Path, help="Parent directory for working files")
    migrate.add_argument(
        "--keep-files", action="store_true", help="Keep exported files after a successful run"
    )
    migrate.add_argument(
        "--timeout", type=float, help="Timeout in minutes for each export and import"
    )
    migrate.add_argument(
        "--custom-domain", metavar="SRC:DST", help="Extra literal replacement applied last"
    )
    migrate.add_argument(
        "--homepage", action="store_true", help="Include the main site's content tables"
    )
    migrate.set_defaults(handler=_cmd_migrate)

    paths = subparsers.add_parser("paths", help="List supported migration paths")
    paths.set_defaults(handler=_cmd_paths, verbose=False, log_file=None, config=None)

    reset = subparsers.add_parser(
        "reset-staging", parents=[common], help="Drop every table in the staging database"
    )
    reset.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    reset.set_defaults(handler=_cmd_reset_staging)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.log_file)
    return int(args.handler(args))


# =============================================================================
# migrate
# =============================================================================


def _cmd_migrate(args: argparse.Namespace) -> int:
    try:
        request = MigrationRequest(
            tenant_id=args.tenant,
            source=Environment.parse(args.source),
            target=Environment.parse(args.target),
            dry_run=args.dry_run,
            force=args.force,
            skip_backup=args.skip_backup,
            skip_s3=args.skip_s3,
            sync_files=args.sync_files,
            work_dir=args.work_dir,
            keep_files=args.keep_files,
            timeout_minutes=args.timeout,
            custom_domain=args.custom_domain,
            include_homepage=args.homepage,
            verbose=args.verbose,
        )
    except ValidationError as e:
        _report_failure(e)
        return EXIT_USAGE

    settings = _load_settings(args.config)
    if settings is None:
        return EXIT_USAGE
    return asyncio.run(run_migration(settings, request))


async def run_migration(
    settings: Settings,
    request: MigrationRequest,
    *,
    orchestrator: MigrationOrchestrator | None = None,
    databases: DatabaseRegistry | None = None,
) -> int:
    """
    Run one migration and print its summary.

    The staging lock is held for the whole run unless it is a dry run.

    Returns:
        Process exit code.
    """
    databases = databases or DatabaseRegistry(settings)
    orchestrator = orchestrator or MigrationOrchestrator(
        settings, databases=databases, confirm=confirm_migration
    )
    try:
        if request.dry_run:
            result = await orchestrator.run(request)
        else:
            async with StagingLock(settings.lock_path).acquire():
                result = await orchestrator.run(request)
    except (ValidationError, UnsupportedPathError) as e:
        _report_failure(e)
        return EXIT_USAGE
    except MigrationError as e:
        _report_failure(e)
        return EXIT_FAILURE
    finally:
        await databases.dispose_all()

    print_summary(result)
    return result.exit_code


def confirm_migration(run: MigrationRun, rules: list[RewriteRule]) -> bool:
    """Show the plan and ask the operator to go ahead."""
    print()
    print(f"About to migrate {run.display_name} (site {run.tenant_id})")
    print(f"  from {run.source.value} to {run.target.value}")
    print(f"  {run.target.value} tables for this site will be overwritten")
    print("  Rewrite rules:")
    for rule in rules:
        print(f"    {rule}")
    return _ask("Proceed? [y/N] ")


def print_summary(result: MigrationResult) -> None:
    run = result.run
    print()
    print("=" * 60)
    print("Migration summary" + (" (dry run)" if run.dry_run else ""))
    print("=" * 60)
    print(f"Site:      {run.display_name} (ID {run.tenant_id})")
    print(f"Path:      {run.source.value} -> {run.target.value}")
    print(f"State:     {result.state.label}")
    print(f"Duration:  {result.duration_seconds:.1f}s")

    if result.rewrite is not None and not run.dry_run:
        print(
            f"Rewrite:   {result.rewrite.rules_applied} rules, "
            f"{result.rewrite.total_rows_updated} rows updated"
        )

    if run.artifacts:
        print("\nPlanned artifacts:" if run.dry_run else "\nArtifacts:")
        for artifact in run.artifacts:
            print(
                f"  {artifact.purpose.value:<16} {artifact.file_name} "
                f"({artifact.table_count} tables, {artifact.byte_size / 1024 / 1024:.2f} MB)"
            )

    if result.archive is not None:
        print(f"\nArchived to: {result.archive.location} ({result.archive.backend})")
    if result.file_sync is not None:
        print(f"File sync:   {result.file_sync.message}")

    if result.warnings:
        print("\nWarnings:")
        for warning in result.warnings:
            print(f"  - {warning}")


# =============================================================================
# paths
# =============================================================================


def _cmd_paths(args: argparse.Namespace) -> int:  # noqa: ARG001
    print("Supported migration paths:")
    for source, target in EnvironmentMappingResolver().supported_paths():
        print(f"  {source.value} -> {target.value}")
    return EXIT_OK


# =============================================================================
# reset-staging
# =============================================================================


def _cmd_reset_staging(args: argparse.Namespace) -> int:
    settings = _load_settings(args.config)
    if settings is None:
        return EXIT_USAGE
    if not args.force and not _ask("Drop every table in the staging database? [y/N] "):
        print("Cancelled")
        return EXIT_OK
    return asyncio.run(reset_staging(settings))


async def reset_staging(settings: Settings, databases: DatabaseRegistry | None = None) -> int:
    """Empty the staging database under the staging lock."""
    databases = databases or DatabaseRegistry(settings)
    try:
        async with StagingLock(settings.lock_path).acquire():
            dropped = await StagingDatabaseCoordinator(databases.get(Environment.STAGING)).reset()
    except ValidationError as e:
        _report_failure(e, action="Staging reset")
        return EXIT_USAGE
    except MigrationError as e:
        _report_failure(e, action="Staging reset")
        return EXIT_FAILURE
    finally:
        await databases.dispose_all()

    print(f"Staging database reset ({dropped} tables dropped)")
    return EXIT_OK


# =============================================================================
# Helpers
# =============================================================================


def _load_settings(config_file: str | None) -> Settings | None:
    try:
        return load_settings(config_file)
    except SettingsValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return None


def _ask(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _report_failure(error: MigrationError, action: str = "Migration") -> None:
    if error.stage is not None:
        print(f"{action} failed during {error.stage.label}: {error.message}", file=sys.stderr)
    else:
        print(f"{action} failed: {error.message}", file=sys.stderr)
    suggestion = error.suggested_action or error.classification.suggested_action
    if suggestion:
        print(f"Suggested action: {suggestion}", file=sys.stderr)


__all__ = [
    "EXIT_FAILURE",
    "EXIT_OK",
    "EXIT_USAGE",
    "build_parser",
    "confirm_migration",
    "configure_logging",
    "main",
    "print_summary",
    "reset_staging",
    "run_migration",
]
