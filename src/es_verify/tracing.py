"""OpenTelemetry tracing helpers for verification operations.

Tunnel setup, catalog queries and poll loops each emit a span. Spans never
carry credential material: only namespaces, resource names, ports and
prefixes are recorded, and error messages are sanitized before they are
attached.

Example:
    >>> from es_verify.tracing import get_tracer, verification_span
    >>> with verification_span(get_tracer(), "tunnel.open", namespace="storage"):
    ...     pass
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Iterator

TRACER_NAME = "es_verify"

ATTR_OPERATION = "verify.operation"
ATTR_NAMESPACE = "verify.namespace"
ATTR_RESOURCE = "verify.resource"

_PEM_PATTERN = re.compile(
    r"-----BEGIN [A-Z ]+-----.*?-----END [A-Z ]+-----",
    re.DOTALL,
)
_URL_CREDENTIAL_PATTERN = re.compile(r"://[^@/\s]+:[^@/\s]+@")

_tracers: dict[str, trace.Tracer] = {}
_tracer_init_failed = False
_lock = threading.Lock()


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    """Get or create a cached tracer.

    Falls back to a NoOpTracer if OpenTelemetry initialization fails, so
    tracing problems never break a verification run.

    Args:
        name: Instrumentation scope name.

    Returns:
        OpenTelemetry Tracer instance.
    """
    global _tracer_init_failed

    if name in _tracers:
        return _tracers[name]
    if _tracer_init_failed:
        return trace.NoOpTracer()

    with _lock:
        if name in _tracers:
            return _tracers[name]
        try:
            tracer = trace.get_tracer(name)
        except Exception:  # noqa: BLE001
            _tracer_init_failed = True
            return trace.NoOpTracer()
        _tracers[name] = tracer
        return tracer


def reset_tracer() -> None:
    """Clear cached tracers (for test isolation)."""
    global _tracer_init_failed
    with _lock:
        _tracers.clear()
        _tracer_init_failed = False


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """Redact PEM blocks and URL credentials, then truncate.

    Example:
        >>> sanitize_error_message("GET https://admin:pw@localhost:9200 failed")
        'GET https://<REDACTED>@localhost:9200 failed'
    """
    sanitized = _PEM_PATTERN.sub("<REDACTED PEM>", msg)
    sanitized = _URL_CREDENTIAL_PATTERN.sub("://<REDACTED>@", sanitized)
    return sanitized[:max_length]


@contextmanager
def verification_span(
    tracer: trace.Tracer,
    operation: str,
    *,
    namespace: str | None = None,
    resource: str | None = None,
    extra_attributes: dict[str, Any] | None = None,
) -> Iterator[trace.Span]:
    """Context manager for creating verification operation spans.

    Args:
        tracer: OpenTelemetry tracer instance.
        operation: Operation name (e.g., "tunnel.open", "catalog.query").
        namespace: Kubernetes namespace the operation targets.
        resource: Resource name (service, workload) the operation targets.
        extra_attributes: Additional span attributes.

    Yields:
        The active span for adding custom attributes.
    """
    attributes: dict[str, Any] = {ATTR_OPERATION: operation}
    if namespace is not None:
        attributes[ATTR_NAMESPACE] = namespace
    if resource is not None:
        attributes[ATTR_RESOURCE] = resource
    if extra_attributes:
        attributes.update(extra_attributes)

    with tracer.start_as_current_span(f"es_verify.{operation}", attributes=attributes) as span:
        try:
            yield span
            span.set_status(Status(StatusCode.OK))
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            span.set_attribute("exception.type", type(e).__name__)
            span.set_attribute("exception.message", sanitize_error_message(str(e)))
            raise


__all__ = [
    "ATTR_NAMESPACE",
    "ATTR_OPERATION",
    "ATTR_RESOURCE",
    "TRACER_NAME",
    "get_tracer",
    "reset_tracer",
    "sanitize_error_message",
    "verification_span",
]
