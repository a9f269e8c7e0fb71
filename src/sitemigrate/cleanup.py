"""
End-of-run cleanup.

Cleanup never fails a run. Every problem becomes a CleanupFailure that is
logged and returned as a warning, after the run's primary result is known.
"""

from __future__ import annotations

import logging
import shutil

from sitemigrate.exceptions import CleanupFailure, StagingError
from sitemigrate.models import MigrationRun
from sitemigrate.staging import StagingDatabaseCoordinator

logger = logging.getLogger(__name__)


class CleanupCoordinator:
    """
    Resets staging and removes local artifacts.

    Args:
        staging: Coordinator for the staging database.
    """

    def __init__(self, staging: StagingDatabaseCoordinator) -> None:
        self._staging = staging

    async def reset_staging(self) -> CleanupFailure | None:
        """Empty staging, reporting failure instead of raising it."""
        try:
            await self._staging.reset()
        except StagingError as e:
            failure = CleanupFailure(f"Could not reset staging database: {e.message}")
            logger.warning("%s", failure)
            return failure
        return None

    async def cleanup(self, run: MigrationRun, keep_files: bool) -> list[CleanupFailure]:
        """
        Reset staging and, unless keep_files is set, delete the run's files.

        Args:
            run: The run whose artifacts and working directory are removed.
            keep_files: Leave artifacts and the working directory in place.

        Returns:
            Failures encountered. Empty when everything was cleaned.
        """
        failures: list[CleanupFailure] = []

        staging_failure = await self.reset_staging()
        if staging_failure is not None:
            failures.append(staging_failure)

        if keep_files:
            logger.info("Keeping migration files in %s", run.work_dir)
            return failures

        for artifact in run.artifacts:
            try:
                artifact.path.unlink(missing_ok=True)
            except OSError as e:
                failure = CleanupFailure(
                    f"Could not delete {artifact.path}: {e}", path=str(artifact.path)
                )
                logger.warning("%s", failure)
                failures.append(failure)

        if run.work_dir.exists():
            try:
                shutil.rmtree(run.work_dir)
            except OSError as e:
                failure = CleanupFailure(
                    f"Could not remove working directory {run.work_dir}: {e}",
                    path=str(run.work_dir),
                )
                logger.warning("%s", failure)
                failures.append(failure)

        if not failures:
            logger.info("Cleanup complete")
        return failures


__all__ = ["CleanupCoordinator"]
