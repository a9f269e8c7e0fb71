"""
Naming conventions for tables, artifacts and archive locations.

Artifact files follow {site}-{tenant}-{environment}-{purpose}-{MM-DD-YYYY}.sql,
e.g. magazine-43-pprd-migrated-export-08-05-2025.sql.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from sitemigrate.models import ArtifactPurpose, Environment

WORK_DIR_PREFIX = "sitemigrate-"
METADATA_FILE_NAME = "migration-metadata.json"

NETWORK_TABLES: frozenset[str] = frozenset(
    {
        "blogs",
        "blogmeta",
        "site",
        "sitemeta",
        "users",
        "usermeta",
        "registration_log",
        "signups",
    }
)
"""Network-wide tables (without prefix). Never exported or rewritten per tenant."""

MAIN_SITE_TABLES: frozenset[str] = frozenset(
    {
        "commentmeta",
        "comments",
        "links",
        "options",
        "postmeta",
        "posts",
        "term_relationships",
        "term_taxonomy",
        "termmeta",
        "terms",
    }
)
"""Content tables of the main site (without prefix). Included only on request."""

_ENV_DOMAIN_SUFFIX = re.compile(r"\.(pprd\.wfu\.edu|dev\.wfu\.edu|uat\.wfu\.edu|wfu\.edu)$")
_HOST_PREFIX = re.compile(r"^(www\.|aws\.)")


def skip_tables(prefix: str = "wp_", include_homepage: bool = False) -> set[str]:
    """Prefixed table names excluded from export and rewrite."""
    names = set(NETWORK_TABLES)
    if not include_homepage:
        names |= MAIN_SITE_TABLES
    return {f"{prefix}{name}" for name in names}


def select_tenant_tables(
    tables: Iterable[str],
    tenant_id: int,
    prefix: str = "wp_",
    include_homepage: bool = False,
) -> list[str]:
    """
    Pick the tables owned by a tenant.

    Tenant 1 (the main site) owns the prefixed tables without a numeric
    site segment. Any other tenant owns exactly "{prefix}{id}_*", so 43
    never matches wp_430_posts.

    Args:
        tables: All table names in the database.
        tenant_id: Site id.
        prefix: Table prefix of the installation.
        include_homepage: Keep the main site's content tables.

    Returns:
        Matching table names, sorted.
    """
    skipped = skip_tables(prefix, include_homepage)
    if tenant_id == 1:
        numbered = re.compile(rf"^{re.escape(prefix)}\d+_")
        owned = (t for t in tables if t.startswith(prefix) and not numbered.match(t))
    else:
        exact = f"{prefix}{tenant_id}_"
        owned = (t for t in tables if t.startswith(exact))
    return sorted(t for t in owned if t not in skipped)


def sanitize_site_name(name: str) -> str:
    """Lowercase, with runs of anything but [a-z0-9] collapsed to one dash."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def site_name_from_blog(domain: str | None, path: str | None, tenant_id: int) -> str:
    """
    Derive a readable site name from a wp_blogs row.

    The environment domain suffix and any www./aws. prefix are dropped, and a
    meaningful path segment is appended. ("magazine.pprd.wfu.edu", "/")
    gives "magazine"; ("www.news.wfu.edu", "/alumni/") gives "news-alumni".
    """
    fallback = f"site{tenant_id}"
    if not domain:
        return fallback

    name = _ENV_DOMAIN_SUFFIX.sub("", domain)
    name = _HOST_PREFIX.sub("", name)

    if path and path not in ("/", "/wp/"):
        path_name = path.strip("/")
        if path_name.endswith("/wp"):
            path_name = path_name[: -len("/wp")]
        if path_name:
            name = f"{name}-{path_name}" if name else path_name

    return sanitize_site_name(name) or fallback


def format_date(moment: datetime) -> str:
    return moment.strftime("%m-%d-%Y")


def artifact_file_name(
    site_name: str,
    tenant_id: int,
    environment: Environment,
    purpose: ArtifactPurpose,
    moment: datetime,
) -> str:
    site = sanitize_site_name(site_name) or f"site{tenant_id}"
    return f"{site}-{tenant_id}-{environment.value}-{purpose.value}-{format_date(moment)}.sql"


def run_directory(base: Path, started_at: datetime) -> Path:
    """Working directory of a run: {base}/sitemigrate-YYYY-MM-DDTHH-MM-SS."""
    return base / f"{WORK_DIR_PREFIX}{started_at.strftime('%Y-%m-%dT%H-%M-%S')}"


def archive_key_prefix(
    prefix: str,
    site_name: str,
    tenant_id: int,
    source: Environment,
    target: Environment,
    moment: datetime,
) -> str:
    """Object-storage "directory" for one run, ending in '/'."""
    site = sanitize_site_name(site_name) or f"site{tenant_id}"
    folder = f"{site}-{tenant_id}-{source.value}-to-{target.value}-{format_date(moment)}"
    prefix = prefix.strip("/")
    return f"{prefix}/{folder}/" if prefix else f"{folder}/"


__all__ = [
    "MAIN_SITE_TABLES",
    "METADATA_FILE_NAME",
    "NETWORK_TABLES",
    "archive_key_prefix",
    "artifact_file_name",
    "format_date",
    "run_directory",
    "sanitize_site_name",
    "select_tenant_tables",
    "site_name_from_blog",
    "skip_tables",
]
