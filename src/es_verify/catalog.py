"""Catalog query client: index listing over an open tunnel.

Elasticsearch's ``GET /_cat/indices`` returns one plain-text line per
index. The only predicate needed is "is there at least one index whose
name contains this prefix", answered by substring containment on the body.

Any transport failure or non-2xx status raises QueryTransportError. Inside
a poll loop that aborts the wait: a failed request is never read as "no
matching index", even while waiting for indices to disappear.

Example:
    >>> with manager.open("storage", "elasticsearch", "elasticsearch", 9200) as tunnel:
    ...     has_entry_with_prefix(tunnel, "jaeger-span-")
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog

from es_verify.errors import QueryTransportError
from es_verify.tracing import get_tracer, verification_span

if TYPE_CHECKING:
    from es_verify.credentials import CredentialBundle
    from es_verify.tunnel import Tunnel

logger = structlog.get_logger(__name__)

CATALOG_PATH = "/_cat/indices"
DEFAULT_QUERY_TIMEOUT = 10.0


@dataclass(frozen=True)
class CatalogQuery:
    """One catalog evaluation, built fresh for every check.

    Attributes:
        local_port: Local end of the tunnel.
        prefix: Index-name prefix to look for.
        use_secure_transport: Query over HTTPS with client certificates.
    """

    local_port: int
    prefix: str
    use_secure_transport: bool = False

    @property
    def url(self) -> str:
        scheme = "https" if self.use_secure_transport else "http"
        return f"{scheme}://localhost:{self.local_port}{CATALOG_PATH}"

    def matches(self, body: str) -> bool:
        """Return True if any line of the listing contains the prefix."""
        return self.prefix in body


def _query_for(
    tunnel: Tunnel, prefix: str, credentials: CredentialBundle | None
) -> CatalogQuery:
    return CatalogQuery(
        local_port=tunnel.local_port,
        prefix=prefix,
        use_secure_transport=credentials is not None,
    )


def fetch_catalog(
    tunnel: Tunnel,
    credentials: CredentialBundle | None = None,
    *,
    timeout: float = DEFAULT_QUERY_TIMEOUT,
    transport: httpx.BaseTransport | None = None,
) -> str:
    """Fetch the raw ``_cat/indices`` body through a tunnel.

    Args:
        tunnel: Open tunnel to the Elasticsearch pod.
        credentials: Bundle for mutual TLS. Plain HTTP is used when None.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).

    Returns:
        Response body text.

    Raises:
        TunnelClosedError: If the tunnel was already closed.
        QueryTransportError: On connection failure or a non-2xx status.
    """
    tunnel.ensure_open()
    query = _query_for(tunnel, "", credentials)
    verify = credentials.ssl_context() if credentials is not None else True

    with verification_span(
        get_tracer(),
        "catalog.query",
        namespace=tunnel.namespace,
        resource=tunnel.service_name,
        extra_attributes={"catalog.secure": query.use_secure_transport},
    ) as span:
        try:
            with httpx.Client(timeout=timeout, verify=verify, transport=transport) as client:
                response = client.get(query.url)
        except httpx.HTTPError as e:
            logger.warning(
                "catalog.transport_error",
                url=query.url,
                namespace=tunnel.namespace,
                error=str(e),
            )
            raise QueryTransportError(query.url, reason=str(e)) from e

        span.set_attribute("http.status_code", response.status_code)
        if not response.is_success:
            logger.warning(
                "catalog.bad_status",
                url=query.url,
                namespace=tunnel.namespace,
                status_code=response.status_code,
            )
            raise QueryTransportError(
                query.url,
                status_code=response.status_code,
                reason=response.text[:200],
            )
        return response.text


def list_catalog(
    tunnel: Tunnel,
    credentials: CredentialBundle | None = None,
    *,
    timeout: float = DEFAULT_QUERY_TIMEOUT,
    transport: httpx.BaseTransport | None = None,
) -> list[str]:
    """Return the non-empty lines of the ``_cat/indices`` listing."""
    body = fetch_catalog(tunnel, credentials, timeout=timeout, transport=transport)
    return [line.strip() for line in body.splitlines() if line.strip()]


def has_entry_with_prefix(
    tunnel: Tunnel,
    prefix: str,
    credentials: CredentialBundle | None = None,
    *,
    timeout: float = DEFAULT_QUERY_TIMEOUT,
    transport: httpx.BaseTransport | None = None,
) -> bool:
    """Check whether any catalog entry contains ``prefix``.

    Args:
        tunnel: Open tunnel to the Elasticsearch pod.
        prefix: Index-name prefix, e.g. ``"prefix-jaeger-"``.
        credentials: Bundle for mutual TLS. Plain HTTP is used when None.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport.

    Returns:
        True if the listing contains the prefix.

    Raises:
        QueryTransportError: On connection failure or a non-2xx status.
    """
    query = _query_for(tunnel, prefix, credentials)
    body = fetch_catalog(tunnel, credentials, timeout=timeout, transport=transport)
    found = query.matches(body)
    logger.debug(
        "catalog.prefix_checked",
        namespace=tunnel.namespace,
        prefix=prefix,
        found=found,
    )
    return found


__all__ = [
    "CATALOG_PATH",
    "DEFAULT_QUERY_TIMEOUT",
    "CatalogQuery",
    "fetch_catalog",
    "has_entry_with_prefix",
    "list_catalog",
]
