"""
Staging database coordination.

The staging database is one shared workspace. Two rules keep it safe:

- It is emptied before a run imports into it and emptied again during
  cleanup, whether the run succeeded or not.
- Only one run may use it at a time. StagingLock is the advisory file lock
  callers take before building an orchestrator.

Usage:
    >>> lock = StagingLock(settings.lock_path)
    >>> async with lock.acquire(timeout=0):
    ...     await orchestrator.run(request)
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from sqlalchemy.exc import SQLAlchemyError

from sitemigrate.database import DatabaseHandle
from sitemigrate.exceptions import LockAcquisitionError, StagingError
from sitemigrate.observability import NullTracer, Tracer

logger = logging.getLogger(__name__)


class StagingDatabaseCoordinator:
    """
    Owns the reset/verify discipline for the staging database.

    Args:
        handle: Database handle pointing at staging.
        tracer: Optional tracer.
    """

    def __init__(self, handle: DatabaseHandle, tracer: Tracer | None = None) -> None:
        self._handle = handle
        self._tracer = tracer or NullTracer()

    @property
    def handle(self) -> DatabaseHandle:
        return self._handle

    async def reset(self) -> int:
        """
        Drop every table in staging.

        Returns:
            Number of tables dropped.

        Raises:
            StagingError: If the tables cannot be listed or dropped.
        """
        with self._tracer.span("sitemigrate.staging.reset"):
            try:
                tables = await self._handle.list_tables()
                await self._handle.drop_tables(tables)
            except (SQLAlchemyError, OSError) as e:
                raise StagingError(f"Could not reset staging database: {e}") from e

        if tables:
            logger.info("Staging database reset (%d tables dropped)", len(tables))
        else:
            logger.debug("Staging database already empty")
        return len(tables)

    async def verify_clean(self) -> bool:
        """
        Check whether staging holds no tables.

        Advisory only: an unreadable database counts as not clean.
        """
        try:
            tables = await self._handle.list_tables()
        except (SQLAlchemyError, OSError) as e:
            logger.debug("Could not inspect staging database: %s", e)
            return False
        return not tables

    async def ensure_clean(self) -> None:
        """
        Reset staging and confirm it is empty.

        Raises:
            StagingError: If the reset fails or tables remain afterwards.
        """
        await self.reset()
        if not await self.verify_clean():
            raise StagingError("Staging database is not empty after reset")


@dataclass(frozen=True)
class LockInfo:
    """
    Information about an acquired lock.

    Attributes:
        key: Path of the lock file.
        acquired_at: When the lock was acquired.
        holder_pid: Process id written into the lock file.
    """

    key: str
    acquired_at: datetime
    holder_pid: int


class StagingLock:
    """
    Run-scoped advisory lock around the staging database.

    Backed by flock(2) on a lock file, so the lock is released by the kernel
    if the holder dies. Acquisition never blocks the event loop: it polls a
    non-blocking flock until the timeout expires.

    Args:
        path: Lock file location. Parent directories are created.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._held: LockInfo | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def info(self) -> LockInfo | None:
        """Details of the lock while held, otherwise None."""
        return self._held

    def holder(self) -> str | None:
        """Process id recorded by the current or last holder, if any."""
        try:
            content = self._path.read_text().strip()
        except OSError:
            return None
        return content or None

    @asynccontextmanager
    async def acquire(
        self,
        *,
        timeout: float = 0,
        retry_interval: float = 0.5,
    ) -> AsyncIterator[LockInfo]:
        """
        Hold the lock for the duration of the block.

        Args:
            timeout: Seconds to keep trying. 0 fails immediately if the lock
                is held.
            retry_interval: Seconds between attempts.

        Yields:
            LockInfo with lock details.

        Raises:
            LockAcquisitionError: If the lock cannot be acquired in time.
        """
        key = str(self._path)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self._path, "a+")
        except OSError as e:
            raise LockAcquisitionError(key, f"Cannot open lock file: {e}") from e

        try:
            await self._lock(handle, key, timeout, retry_interval)

            handle.seek(0)
            handle.truncate()
            handle.write(str(os.getpid()))
            handle.flush()

            self._held = LockInfo(
                key=key,
                acquired_at=datetime.now(UTC),
                holder_pid=os.getpid(),
            )
            logger.debug("Acquired staging lock: %s", key)
            try:
                yield self._held
            finally:
                self._held = None
                fcntl.flock(handle, fcntl.LOCK_UN)
                logger.debug("Released staging lock: %s", key)
        finally:
            handle.close()

    async def _lock(
        self,
        handle: IO[str],
        key: str,
        timeout: float,
        retry_interval: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if loop.time() >= deadline:
                    holder = self.holder()
                    reason = "held by another migration"
                    if holder:
                        reason += f" (pid {holder})"
                    if timeout:
                        reason += f"; gave up after {timeout}s"
                    raise LockAcquisitionError(key, reason, timeout=timeout or None) from None
            await asyncio.sleep(retry_interval)


__all__ = [
    "LockInfo",
    "StagingDatabaseCoordinator",
    "StagingLock",
]
