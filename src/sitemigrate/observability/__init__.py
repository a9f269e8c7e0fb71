"""
Observability helpers for sitemigrate.

Tracing is composition based: components accept a ``Tracer`` and fall back
to ``NullTracer``. ``create_tracer`` picks the OpenTelemetry implementation
when tracing is enabled in settings.
"""

from sitemigrate.observability.attributes import (
    ATTR_ARCHIVE_BACKEND,
    ATTR_BYTE_SIZE,
    ATTR_DRY_RUN,
    ATTR_ENVIRONMENT,
    ATTR_RULE_COUNT,
    ATTR_SOURCE_ENV,
    ATTR_STAGE,
    ATTR_TABLE_COUNT,
    ATTR_TARGET_ENV,
    ATTR_TENANT_ID,
    ATTR_TIMEOUT_MINUTES,
)
from sitemigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_ARCHIVE_BACKEND",
    "ATTR_BYTE_SIZE",
    "ATTR_DRY_RUN",
    "ATTR_ENVIRONMENT",
    "ATTR_RULE_COUNT",
    "ATTR_SOURCE_ENV",
    "ATTR_STAGE",
    "ATTR_TABLE_COUNT",
    "ATTR_TARGET_ENV",
    "ATTR_TENANT_ID",
    "ATTR_TIMEOUT_MINUTES",
]
