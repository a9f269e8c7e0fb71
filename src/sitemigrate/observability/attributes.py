"""
Standard span attributes for sitemigrate.

Attribute names follow OpenTelemetry conventions: dotted, lowercase, and
namespaced under "sitemigrate".
"""

# =============================================================================
# Run Attributes
# =============================================================================

ATTR_TENANT_ID = "sitemigrate.tenant.id"
"""Tenant (site) being migrated (integer)."""

ATTR_SOURCE_ENV = "sitemigrate.source"
"""Environment the site is copied from (string)."""

ATTR_TARGET_ENV = "sitemigrate.target"
"""Environment the site is copied to (string)."""

ATTR_DRY_RUN = "sitemigrate.dry_run"
"""Whether mutating calls are suppressed (boolean)."""

ATTR_STAGE = "sitemigrate.stage"
"""Pipeline state the span belongs to (string)."""

# =============================================================================
# Component Attributes
# =============================================================================

ATTR_ENVIRONMENT = "sitemigrate.environment"
"""Environment a single export/import call runs against (string)."""

ATTR_TABLE_COUNT = "sitemigrate.table.count"
"""Number of tables exported or imported (integer)."""

ATTR_BYTE_SIZE = "sitemigrate.artifact.bytes"
"""Size of an SQL artifact (integer)."""

ATTR_RULE_COUNT = "sitemigrate.rule.count"
"""Number of rewrite rules applied (integer)."""

ATTR_ARCHIVE_BACKEND = "sitemigrate.archive.backend"
"""Sink that stored the archive ("s3" or "local")."""

ATTR_TIMEOUT_MINUTES = "sitemigrate.timeout_minutes"
"""Timeout applied to an external call (float)."""


__all__ = [
    "ATTR_TENANT_ID",
    "ATTR_SOURCE_ENV",
    "ATTR_TARGET_ENV",
    "ATTR_DRY_RUN",
    "ATTR_STAGE",
    "ATTR_ENVIRONMENT",
    "ATTR_TABLE_COUNT",
    "ATTR_BYTE_SIZE",
    "ATTR_RULE_COUNT",
    "ATTR_ARCHIVE_BACKEND",
    "ATTR_TIMEOUT_MINUTES",
]
