"""es-verify: eventual-state verification for Elasticsearch-backed tracing deployments.

Opens a port-forward into the cluster, queries the index catalog and polls
until an expected state holds, correlated with the index-cleaner job.

Example:
    >>> from es_verify import IndexCleanerScenario, VerificationConfig
    >>> config = VerificationConfig(storage_namespace="storage")
    >>> scenario = IndexCleanerScenario.from_config(config)
    >>> scenario.index_with_prefix_exists("simple-prod-jaeger-", expected=True)
"""

from __future__ import annotations

from typing import Any

__version__ = "0.1.0"
__all__ = [
    "IndexCleanerScenario",
    "PollSpec",
    "VerificationConfig",
    "wait_for_value",
    "wait_until",
]


# Lazy imports keep `import es_verify` free of the kubernetes client
def __getattr__(name: str) -> Any:
    """Lazy import of public components."""
    if name == "IndexCleanerScenario":
        from es_verify.verification import IndexCleanerScenario

        return IndexCleanerScenario
    if name == "VerificationConfig":
        from es_verify.config import VerificationConfig

        return VerificationConfig
    if name in ("PollSpec", "wait_for_value", "wait_until"):
        from es_verify import polling

        return getattr(polling, name)
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
