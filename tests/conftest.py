"""
Shared pytest fixtures for the sitemigrate tests.

This module provides:
- Settings pointing every environment at dummy MySQL descriptors
  (settings, make_settings)
- One SQLite file per environment plus staging (sqlite_paths)
- A DatabaseRegistry whose handles use those files through aiosqlite
  (databases)
- A FakeCommandRunner that emulates the MySQL client tools against the
  same files (runner)
- A MockTracer (tracer)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from sitemigrate.commands import ContainerCommandBuilder
from sitemigrate.config import Settings
from sitemigrate.database import DatabaseHandle, DatabaseRegistry
from sitemigrate.models import Environment
from sitemigrate.observability import MockTracer
from tests.fixtures import FakeCommandRunner


def database_name(environment: Environment) -> str:
    return f"{environment.value}_db"


def database_config(environment: Environment) -> dict[str, Any]:
    return {
        "host": f"{environment.value}-db.example.edu",
        "user": "wp",
        "password": f"{environment.value}-secret",
        "database": database_name(environment),
    }


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Factory for Settings with every database configured, rooted in tmp_path."""

    def factory(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "environments": {
                env.value: database_config(env) for env in Environment.endpoints()
            },
            "staging": database_config(Environment.STAGING),
            "backup_path": tmp_path / "backups",
            "lock_path": tmp_path / "staging.lock",
        }
        values.update(overrides)
        return Settings(**values)

    return factory


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


@pytest.fixture
def sqlite_paths(tmp_path: Path) -> dict[Environment, Path]:
    """One SQLite database file per environment, including staging."""
    return {env: tmp_path / f"{env.value}.db" for env in Environment}


@pytest_asyncio.fixture
async def databases(
    settings: Settings,
    sqlite_paths: dict[Environment, Path],
) -> AsyncGenerator[DatabaseRegistry, None]:
    """Registry whose handles point at the SQLite files."""
    handles = {
        env: DatabaseHandle(env, create_async_engine(f"sqlite+aiosqlite:///{path}"))
        for env, path in sqlite_paths.items()
    }
    registry = DatabaseRegistry(settings, handles=handles)
    yield registry
    for handle in handles.values():
        await handle.dispose()


@pytest.fixture
def runner(sqlite_paths: dict[Environment, Path]) -> FakeCommandRunner:
    return FakeCommandRunner(
        databases={database_name(env): path for env, path in sqlite_paths.items()}
    )


@pytest.fixture
def commands(settings: Settings) -> ContainerCommandBuilder:
    return ContainerCommandBuilder(settings.container)


@pytest.fixture
def tracer() -> MockTracer:
    return MockTracer()
