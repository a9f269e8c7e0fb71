"""
Shared test helpers for sitemigrate.

Usage:
    from tests.fixtures import (
        FakeCommandRunner,
        create_network_tables,
        create_site,
        post_content,
    )
"""

from tests.fixtures.runner import (
    VERSION_OUTPUT,
    FakeCommandRunner,
    RecordedCall,
    dump_sqlite_tables,
    load_sqlite_script,
    tool_of,
)
from tests.fixtures.sites import (
    create_network_tables,
    create_site,
    execute,
    option_value,
    post_content,
    query,
    table_names,
)

__all__ = [
    "VERSION_OUTPUT",
    "FakeCommandRunner",
    "RecordedCall",
    "create_network_tables",
    "create_site",
    "dump_sqlite_tables",
    "execute",
    "load_sqlite_script",
    "option_value",
    "post_content",
    "query",
    "table_names",
    "tool_of",
]
