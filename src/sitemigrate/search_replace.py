"""
Literal search-replace over the tenant's tables in staging.

Rules run in order, one UPDATE per (rule, table, text column):

    UPDATE t SET c = REPLACE(c, :match, :replacement) WHERE INSTR(c, :match) > 0

Each rule commits on its own. A failure part-way leaves staging partially
rewritten, which is harmless: staging is reset by cleanup and only the
export of a fully rewritten staging database reaches the target.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Connection, MetaData, Table, func, update
from sqlalchemy.exc import SQLAlchemyError

from sitemigrate.database import DatabaseHandle, is_text_type
from sitemigrate.exceptions import RewriteError
from sitemigrate.models import Environment, RewriteReport, RewriteRule
from sitemigrate.naming import select_tenant_tables, skip_tables
from sitemigrate.observability import (
    ATTR_RULE_COUNT,
    ATTR_TENANT_ID,
    NullTracer,
    Tracer,
)

logger = logging.getLogger(__name__)


class SearchReplaceEngine:
    """
    Applies rewrite rules to the staging database.

    Args:
        staging: Handle on the staging database. Rewrites never run
            against any other database.
        tracer: Optional tracer.
    """

    def __init__(self, staging: DatabaseHandle, tracer: Tracer | None = None) -> None:
        self._staging = staging
        self._tracer = tracer or NullTracer()

    async def apply(
        self,
        environment: Environment,
        rules: Sequence[RewriteRule],
        tenant_id: int,
        verbose: bool = False,
        *,
        include_homepage: bool = False,
    ) -> RewriteReport:
        """
        Rewrite every text column of the tenant's tables.

        Args:
            environment: Must be Environment.STAGING.
            rules: Rules in application order.
            tenant_id: Site whose tables are rewritten.
            verbose: Log per-column row counts at INFO instead of DEBUG.
            include_homepage: Rewrite the main site's content tables too.

        Returns:
            RewriteReport with per-rule updated row counts.

        Raises:
            RewriteError: If asked to rewrite anything but staging, if the
                tenant has no tables there, or on a database error.
        """
        if environment != Environment.STAGING:
            raise RewriteError(
                f"Search-replace only runs against staging, not {environment.value}",
                tenant_id=tenant_id,
            )

        prefix = self._staging.table_prefix
        try:
            all_tables = await self._staging.list_tables()
        except (SQLAlchemyError, OSError) as e:
            raise RewriteError(f"Could not list staging tables: {e}", tenant_id=tenant_id) from e

        excluded = skip_tables(prefix, include_homepage)
        tables = select_tenant_tables(all_tables, tenant_id, prefix, include_homepage)
        report = RewriteReport(
            tables=tables,
            skipped_tables=[t for t in all_tables if t in excluded],
        )
        if not tables:
            raise RewriteError(
                f"No tables for site {tenant_id} found in staging",
                tenant_id=tenant_id,
            )

        detail = logging.INFO if verbose else logging.DEBUG
        logger.info("Running search-replace on %d tables", len(tables))
        for skipped in report.skipped_tables:
            logger.log(detail, "  Skipping network table %s", skipped)

        with self._tracer.span(
            "sitemigrate.search_replace",
            {ATTR_TENANT_ID: tenant_id, ATTR_RULE_COUNT: len(rules)},
        ):
            reflected = await self._reflect(tables, tenant_id)
            for rule in rules:
                logger.log(detail, "Replacing %s", rule)
                rows = await self._apply_rule(rule, reflected, tenant_id, detail)
                report.rules_applied += 1
                report.rows_updated.append(rows)

        logger.info(
            "Applied %d rewrite rules (%d rows updated)",
            report.rules_applied,
            report.total_rows_updated,
        )
        return report

    async def _reflect(self, tables: list[str], tenant_id: int) -> list[Table]:
        metadata = MetaData()

        def load(sync_conn: Connection) -> list[Table]:
            return [Table(name, metadata, autoload_with=sync_conn) for name in tables]

        try:
            async with self._staging.engine.connect() as conn:
                return await conn.run_sync(load)
        except (SQLAlchemyError, OSError) as e:
            raise RewriteError(
                f"Could not read staging table definitions: {e}",
                tenant_id=tenant_id,
            ) from e

    async def _apply_rule(
        self,
        rule: RewriteRule,
        tables: list[Table],
        tenant_id: int,
        detail: int,
    ) -> int:
        updated = 0
        current: str | None = None
        try:
            async with self._staging.engine.begin() as conn:
                for table in tables:
                    current = table.name
                    for column in table.columns:
                        if not is_text_type(column.type):
                            continue
                        stmt = (
                            update(table)
                            .where(func.instr(column, rule.match) > 0)
                            .values({column.key: func.replace(column, rule.match, rule.replacement)})
                        )
                        result = await conn.execute(stmt)
                        if result.rowcount:
                            updated += result.rowcount
                            logger.log(
                                detail,
                                "  Updated %s.%s (%d rows)",
                                table.name,
                                column.name,
                                result.rowcount,
                            )
        except (SQLAlchemyError, OSError) as e:
            raise RewriteError(
                f"Search-replace failed on {current}: {e}",
                tenant_id=tenant_id,
                table=current,
            ) from e
        return updated


__all__ = ["SearchReplaceEngine"]
