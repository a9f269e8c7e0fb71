"""
External command execution.

Every dump, restore and runtime check goes through a CommandRunner and comes
back as a CommandResult. Process failures are values, not exceptions, so
the exporter and importer decide what a non-zero exit or a timeout means,
and tests can swap in a scripted runner without spawning processes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from sqlalchemy.engine import make_url

from sitemigrate.config import ContainerConfig, DatabaseConfig

logger = logging.getLogger(__name__)

EXIT_COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of one external command.

    Attributes:
        argv: The command that ran.
        exit_code: Process exit status. None if the process was killed
            on timeout.
        stdout: Captured standard output (empty when redirected to a file).
        stderr: Captured standard error.
        timed_out: Whether the timeout expired.
        duration_ms: Wall-clock time spent.
    """

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0


@runtime_checkable
class CommandRunner(Protocol):
    """Runs an external command and reports how it ended."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            argv: Program and arguments. Never passed through a shell.
            env: Extra environment variables for the child.
            stdin_path: File fed to the child's standard input.
            stdout_path: File that receives the child's standard output.
            timeout: Seconds before the child is killed.

        Returns:
            CommandResult describing the outcome.
        """
        ...


class SubprocessCommandRunner:
    """CommandRunner backed by asyncio subprocesses."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        argv = tuple(argv)
        child_env = {**os.environ, **env} if env else None
        started = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - started) * 1000

        logger.debug("Running %s (timeout=%s)", " ".join(argv), timeout)

        with contextlib.ExitStack() as stack:
            stdin = (
                stack.enter_context(open(stdin_path, "rb"))
                if stdin_path
                else asyncio.subprocess.DEVNULL
            )
            stdout = (
                stack.enter_context(open(stdout_path, "wb"))
                if stdout_path
                else asyncio.subprocess.PIPE
            )

            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=stdin,
                    stdout=stdout,
                    stderr=asyncio.subprocess.PIPE,
                    env=child_env,
                )
            except FileNotFoundError as e:
                return CommandResult(
                    argv=argv,
                    exit_code=EXIT_COMMAND_NOT_FOUND,
                    stderr=str(e),
                    duration_ms=elapsed(),
                )

            try:
                out, err = await asyncio.wait_for(process.communicate(), timeout)
            except TimeoutError:
                process.kill()
                await process.wait()
                logger.warning("%s killed after %ss timeout", argv[0], timeout)
                return CommandResult(
                    argv=argv,
                    exit_code=None,
                    timed_out=True,
                    duration_ms=elapsed(),
                )

        return CommandResult(
            argv=argv,
            exit_code=process.returncode,
            stdout=(out or b"").decode("utf-8", errors="replace"),
            stderr=(err or b"").decode("utf-8", errors="replace"),
            duration_ms=elapsed(),
        )


@dataclass(frozen=True)
class ContainerCommand:
    """A container invocation plus the environment it needs."""

    argv: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _Connection:
    host: str
    port: int
    user: str
    password: str
    database: str


class ContainerCommandBuilder:
    """
    Builds resource-bounded container invocations of the MySQL client tools.

    The password travels as MYSQL_PWD: "-e MYSQL_PWD" forwards the variable
    from the runner's environment so it never appears on a command line.
    """

    def __init__(self, config: ContainerConfig | None = None) -> None:
        self._config = config or ContainerConfig()

    @property
    def runtime(self) -> str:
        return self._config.runtime

    def version_check(self) -> tuple[str, ...]:
        return (self._config.runtime, "--version")

    def daemon_check(self) -> tuple[str, ...]:
        return (self._config.runtime, "info")

    def dump(self, database: DatabaseConfig, tables: Sequence[str]) -> ContainerCommand:
        """Command that writes the named tables as SQL to standard output."""
        conn = self._connection(database)
        argv = (
            *self._container_prefix(),
            "mysqldump",
            "-h",
            conn.host,
            "-P",
            str(conn.port),
            "-u",
            conn.user,
            "--skip-lock-tables",
            "--no-tablespaces",
            "--set-gtid-purged=OFF",
            conn.database,
            *tables,
        )
        return ContainerCommand(argv=argv, env={"MYSQL_PWD": conn.password})

    def restore(self, database: DatabaseConfig) -> ContainerCommand:
        """Command that loads SQL from standard input."""
        conn = self._connection(database)
        argv = (
            *self._container_prefix(),
            "mysql",
            "-h",
            conn.host,
            "-P",
            str(conn.port),
            "-u",
            conn.user,
            "--max_allowed_packet=1G",
            conn.database,
        )
        return ContainerCommand(argv=argv, env={"MYSQL_PWD": conn.password})

    def _container_prefix(self) -> tuple[str, ...]:
        return (
            self._config.runtime,
            "run",
            "--rm",
            "-i",
            f"--memory={self._config.memory}",
            f"--cpus={self._config.cpus}",
            "-e",
            "MYSQL_PWD",
            self._config.image,
        )

    @staticmethod
    def _connection(database: DatabaseConfig) -> _Connection:
        if database.url:
            url = make_url(database.url)
            return _Connection(
                host=url.host or "localhost",
                port=url.port or database.port,
                user=url.username or "",
                password=url.password or "",
                database=url.database or "",
            )
        return _Connection(
            host=database.host or "localhost",
            port=database.port,
            user=database.user or "",
            password=database.password_value,
            database=database.database or "",
        )


__all__ = [
    "CommandResult",
    "CommandRunner",
    "ContainerCommand",
    "ContainerCommandBuilder",
    "EXIT_COMMAND_NOT_FOUND",
    "SubprocessCommandRunner",
]
