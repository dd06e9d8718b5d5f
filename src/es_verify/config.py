"""Configuration models for verification scenarios.

Each scenario builds its own VerificationConfig instead of mutating
process-wide variables. Defaults come from environment variables so a CI
job can point the whole suite at a cluster without code changes.

Environment Variables:
    ES_VERIFY_STORAGE_NAMESPACE: Namespace running Elasticsearch (default: "default")
    ES_VERIFY_SECURE: "true" when Elasticsearch requires mutual TLS
    ES_VERIFY_SECRET_NAME: Secret holding admin-ca/admin-cert/admin-key
    ES_VERIFY_PORT: Elasticsearch HTTP port (default: 9200)
    ES_VERIFY_RETRY_INTERVAL: Poll interval in seconds (default: 10)
    ES_VERIFY_TIMEOUT: Poll timeout in seconds (default: 300)
    KUBECONFIG: Kubeconfig path; in-cluster config is used when unset

Example:
    >>> from es_verify.config import VerificationConfig
    >>> config = VerificationConfig(storage_namespace="storage", secure_transport=True)
    >>> config.poll_spec(expected=False).expected
    False
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from es_verify.polling import PollSpec

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


class VerificationConfig(BaseModel):
    """Settings shared by one verification scenario.

    Attributes:
        storage_namespace: Namespace where the Elasticsearch service runs.
        secure_transport: Query over mutual TLS using the admin secret.
        secret_name: Secret holding the TLS bundle.
        service_name: Service name used to pick the pod to forward to.
        selector_name: Value of the pods' ``app`` label.
        remote_port: Elasticsearch HTTP port inside the pod.
        retry_interval: Seconds between checks.
        timeout: Seconds before a wait gives up.
        setup_timeout: Seconds allowed for pod lookup and tunnel readiness.
        query_timeout: Seconds allowed for one catalog request.
        kubeconfig_path: Kubeconfig file. None uses in-cluster config first.
        context: Kubeconfig context. None uses the current context.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    storage_namespace: str = Field(
        default_factory=lambda: os.environ.get("ES_VERIFY_STORAGE_NAMESPACE", "default"),
        min_length=1,
        max_length=63,
        pattern=r"^[a-z0-9][a-z0-9-]*[a-z0-9]$|^[a-z0-9]$",
    )
    secure_transport: bool = Field(default_factory=lambda: _env_flag("ES_VERIFY_SECURE"))
    secret_name: str = Field(
        default_factory=lambda: os.environ.get("ES_VERIFY_SECRET_NAME", "elasticsearch"),
        min_length=1,
    )
    service_name: str = Field(default="elasticsearch", min_length=1)
    selector_name: str = Field(default="elasticsearch", min_length=1)
    remote_port: int = Field(
        default_factory=lambda: os.environ.get("ES_VERIFY_PORT", "9200"),
        ge=1,
        le=65535,
    )
    retry_interval: float = Field(
        default_factory=lambda: os.environ.get("ES_VERIFY_RETRY_INTERVAL", "10"),
        gt=0.0,
    )
    timeout: float = Field(
        default_factory=lambda: os.environ.get("ES_VERIFY_TIMEOUT", "300"),
        gt=0.0,
    )
    setup_timeout: float = Field(default=60.0, gt=0.0)
    query_timeout: float = Field(default=10.0, gt=0.0)
    kubeconfig_path: str | None = Field(default_factory=lambda: os.environ.get("KUBECONFIG"))
    context: str | None = Field(default=None)

    @field_validator("kubeconfig_path")
    @classmethod
    def expand_kubeconfig_path(cls, v: str | None) -> str | None:
        """Expand ~ in the kubeconfig path."""
        if v is None:
            return None
        return str(Path(v).expanduser())

    @model_validator(mode="after")
    def check_timeout_covers_interval(self) -> VerificationConfig:
        if self.timeout < self.retry_interval:
            msg = (
                f"timeout ({self.timeout}s) must be >= retry_interval "
                f"({self.retry_interval}s)"
            )
            raise ValueError(msg)
        return self

    def poll_spec(self, expected: bool = True, *, extra: float = 0.0) -> PollSpec:
        """Build a PollSpec from the configured interval and timeout.

        Args:
            expected: Predicate value to wait for.
            extra: Seconds added to the timeout (cron jobs get an extra minute).
        """
        return PollSpec(
            interval=self.retry_interval,
            timeout=self.timeout + extra,
            expected=expected,
        )


__all__ = ["VerificationConfig"]
