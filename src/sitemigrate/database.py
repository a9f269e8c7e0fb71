"""
Async database access for one environment or the staging database.

Every query goes through SQLAlchemy's async engine, so the same code talks
to MySQL in production and to SQLite in tests. Table and column discovery
uses the inspector rather than dialect-specific SHOW/DESCRIBE statements.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Enum, String, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.types import TypeEngine

from sitemigrate.config import DatabaseConfig, Settings
from sitemigrate.models import Environment
from sitemigrate.naming import select_tenant_tables, site_name_from_blog

logger = logging.getLogger(__name__)


def is_text_type(type_: TypeEngine) -> bool:
    """True for character columns that can hold free text (not ENUM/SET)."""
    return isinstance(type_, String) and not isinstance(type_, Enum)


class DatabaseHandle:
    """
    Handle on one database.

    The handle owns its engine; call dispose() when finished.

    Example:
        >>> handle = DatabaseHandle.from_config(Environment.PROD, settings.database_for(Environment.PROD))
        >>> tables = await handle.tenant_tables(43)
        >>> await handle.dispose()
    """

    def __init__(
        self,
        environment: Environment,
        engine: AsyncEngine,
        *,
        table_prefix: str = "wp_",
    ) -> None:
        self.environment = environment
        self._engine = engine
        self._table_prefix = table_prefix

    @classmethod
    def from_config(
        cls,
        environment: Environment,
        config: DatabaseConfig,
        *,
        table_prefix: str = "wp_",
    ) -> DatabaseHandle:
        engine = create_async_engine(config.sqlalchemy_url(), pool_pre_ping=True)
        return cls(environment, engine, table_prefix=table_prefix)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def table_prefix(self) -> str:
        return self._table_prefix

    async def test_connection(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.debug("Connection test for %s failed: %s", self.environment.value, e)
            return False
        return True

    async def list_tables(self) -> list[str]:
        async with self._engine.connect() as conn:
            names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        return sorted(names)

    async def tenant_tables(self, tenant_id: int, include_homepage: bool = False) -> list[str]:
        """
        List the tables owned by a tenant, minus the skip list.

        Args:
            tenant_id: Site id.
            include_homepage: Keep the main site's content tables.
        """
        tables = await self.list_tables()
        owned = select_tenant_tables(
            tables,
            tenant_id,
            prefix=self._table_prefix,
            include_homepage=include_homepage,
        )
        logger.debug(
            "Tenant %d owns %d of %d tables in %s",
            tenant_id,
            len(owned),
            len(tables),
            self.environment.value,
        )
        return owned

    async def site_name(self, tenant_id: int) -> str:
        """
        Look the site up in the blogs registry.

        Falls back to "site{id}" if the registry cannot be read.
        """
        query = text(f"SELECT domain, path FROM {self._table_prefix}blogs WHERE blog_id = :blog_id")
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(query, {"blog_id": tenant_id})).first()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Could not read site name from %s: %s", self.environment.value, e)
            return f"site{tenant_id}"

        if row is None:
            return f"site{tenant_id}"
        return site_name_from_blog(row[0], row[1], tenant_id)

    async def text_columns(self, table: str) -> list[str]:
        """Names of the string-typed columns of a table."""
        async with self._engine.connect() as conn:
            columns = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_columns(table))
        return [c["name"] for c in columns if is_text_type(c["type"])]

    async def drop_tables(self, tables: Sequence[str]) -> None:
        """Drop the given tables in one transaction."""
        if not tables:
            return
        async with self._engine.begin() as conn:
            preparer = conn.dialect.identifier_preparer
            for table in tables:
                await conn.execute(text(f"DROP TABLE IF EXISTS {preparer.quote(table)}"))
        logger.debug("Dropped %d tables from %s", len(tables), self.environment.value)

    async def dispose(self) -> None:
        await self._engine.dispose()


class DatabaseRegistry:
    """
    Lazily created handles for the environments a run touches.

    Args:
        settings: Source of connection descriptors.
        handles: Pre-built handles, keyed by environment. Used by tests
            to point environments at SQLite files.
    """

    def __init__(
        self,
        settings: Settings,
        handles: dict[Environment, DatabaseHandle] | None = None,
    ) -> None:
        self._settings = settings
        self._handles: dict[Environment, DatabaseHandle] = dict(handles or {})

    def config_for(self, environment: Environment) -> DatabaseConfig:
        """
        Raises:
            MissingConfigurationError: If the environment is not configured.
        """
        return self._settings.database_for(environment)

    def get(self, environment: Environment) -> DatabaseHandle:
        handle = self._handles.get(environment)
        if handle is None:
            handle = DatabaseHandle.from_config(
                environment,
                self.config_for(environment),
                table_prefix=self._settings.table_prefix,
            )
            self._handles[environment] = handle
        return handle

    async def dispose_all(self) -> None:
        for handle in self._handles.values():
            await handle.dispose()
        self._handles.clear()


__all__ = ["DatabaseHandle", "DatabaseRegistry", "is_text_type"]
