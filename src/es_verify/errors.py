"""Exception hierarchy for the verification engine.

Setup-phase errors (credentials, tunnel) are fatal to the calling scenario
and are never retried by the engine. Errors raised inside a poll loop abort
the loop immediately. DeadlineExceededError is the only "expected" terminal
failure and is kept distinct so callers can report the unmet condition.

Exception Hierarchy:
    VerificationError (base)
    ├── CredentialUnavailableError (also LookupError)
    ├── CredentialMalformedError (also ValueError)
    ├── ClusterConnectionError (also ConnectionError)
    ├── TunnelSetupError (also ConnectionError)
    │   └── TunnelClosedError
    ├── QueryTransportError (also ConnectionError)
    ├── DeadlineExceededError (also TimeoutError)
    ├── WorkloadFetchError (also ConnectionError)
    ├── WorkloadFailedError
    └── WatchFinishedError

Example:
    >>> from es_verify.errors import CredentialUnavailableError
    >>> raise CredentialUnavailableError("elasticsearch", namespace="storage")
    CredentialUnavailableError: Secret 'elasticsearch' not found in namespace 'storage'
"""

from __future__ import annotations

from typing import Any


class VerificationError(Exception):
    """Base exception for all verification engine errors.

    Attributes:
        message: Human-readable error message.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class CredentialUnavailableError(VerificationError, LookupError):
    """Raised when the TLS secret is absent or lacks a required key.

    Attributes:
        secret_name: Name of the secret that was read.
        namespace: Namespace the secret was read from.
        missing_keys: Required keys that were absent or empty.
        reason: Backend error detail when the secret could not be read.
    """

    def __init__(
        self,
        secret_name: str,
        *,
        namespace: str,
        missing_keys: tuple[str, ...] = (),
        reason: str = "",
    ) -> None:
        self.secret_name = secret_name
        self.namespace = namespace
        self.missing_keys = missing_keys
        self.reason = reason
        if reason:
            message = (
                f"Secret '{secret_name}' in namespace '{namespace}' "
                f"could not be read: {reason}"
            )
        elif missing_keys:
            message = (
                f"Secret '{secret_name}' in namespace '{namespace}' is missing "
                f"required keys: {', '.join(missing_keys)}"
            )
        else:
            message = f"Secret '{secret_name}' not found in namespace '{namespace}'"
        VerificationError.__init__(self, message)


class CredentialMalformedError(VerificationError, ValueError):
    """Raised when a PEM blob does not parse or the key pair does not match.

    Attributes:
        secret_name: Name of the secret the blob came from.
        namespace: Namespace of the secret.
        field: Secret key of the offending blob.
        reason: Parser or matching failure detail.
    """

    def __init__(
        self,
        secret_name: str,
        *,
        namespace: str,
        field: str,
        reason: str,
    ) -> None:
        self.secret_name = secret_name
        self.namespace = namespace
        self.field = field
        self.reason = reason
        message = (
            f"Malformed '{field}' in secret '{secret_name}' "
            f"(namespace '{namespace}'): {reason}"
        )
        VerificationError.__init__(self, message)


class TunnelSetupError(VerificationError, ConnectionError):
    """Raised when a port-forward tunnel cannot be established.

    Attributes:
        namespace: Namespace of the target service.
        service_name: Target service name.
        remote_port: Remote port the tunnel was meant to reach.
        reason: What went wrong during setup.
    """

    def __init__(
        self,
        *,
        namespace: str,
        service_name: str,
        remote_port: int,
        reason: str,
    ) -> None:
        self.namespace = namespace
        self.service_name = service_name
        self.remote_port = remote_port
        self.reason = reason
        message = (
            f"Failed to open tunnel to {service_name}:{remote_port} "
            f"in namespace '{namespace}': {reason}"
        )
        VerificationError.__init__(self, message)


class TunnelClosedError(TunnelSetupError):
    """Raised when a tunnel is used after it has been closed."""

    def __init__(self, *, namespace: str, service_name: str, remote_port: int) -> None:
        super().__init__(
            namespace=namespace,
            service_name=service_name,
            remote_port=remote_port,
            reason="tunnel is closed; open a new one",
        )


class ClusterConnectionError(VerificationError, ConnectionError):
    """Raised when the Kubernetes API cannot be configured or reached.

    Attributes:
        reason: Configuration or API error detail.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        VerificationError.__init__(self, f"Kubernetes API unavailable: {reason}")


class QueryTransportError(VerificationError, ConnectionError):
    """Raised when the catalog request fails or returns a non-2xx status.

    Attributes:
        url: Requested URL.
        status_code: HTTP status, or None when no response was received.
        reason: Transport error or response detail.
    """

    def __init__(
        self,
        url: str,
        *,
        status_code: int | None = None,
        reason: str = "",
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.reason = reason
        message = f"Catalog query to {url} failed"
        if status_code is not None:
            message = f"{message} with HTTP {status_code}"
        if reason:
            message = f"{message}: {reason}"
        VerificationError.__init__(self, message)


class DeadlineExceededError(VerificationError, TimeoutError):
    """Raised when a polled condition does not match before its deadline.

    Attributes:
        description: What was being waited for.
        timeout: Configured timeout in seconds.
        elapsed: Seconds spent polling.
        attempts: Number of checks performed.
        expected: Value the check had to return.
        last_value: Last value observed, or None if no check ran.
    """

    def __init__(
        self,
        description: str,
        *,
        timeout: float,
        elapsed: float,
        attempts: int,
        expected: Any,
        last_value: Any = None,
    ) -> None:
        self.description = description
        self.timeout = timeout
        self.elapsed = elapsed
        self.attempts = attempts
        self.expected = expected
        self.last_value = last_value
        message = (
            f"Timeout waiting for {description} after {elapsed:.1f}s "
            f"(timeout {timeout:.1f}s, {attempts} checks): "
            f"expected {expected!r}, last observed {last_value!r}"
        )
        VerificationError.__init__(self, message)


class WorkloadFetchError(VerificationError, ConnectionError):
    """Raised when a workload's status cannot be read from the cluster.

    Attributes:
        kind: Workload kind (e.g. "Deployment").
        namespace: Workload namespace.
        name: Workload name.
        reason: API error detail.
    """

    def __init__(self, kind: str, name: str, *, namespace: str, reason: str) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.reason = reason
        message = f"Failed to fetch {kind} '{name}' in namespace '{namespace}': {reason}"
        VerificationError.__init__(self, message)


class WorkloadFailedError(VerificationError):
    """Raised when a watched workload reaches a terminal failed state.

    Attributes:
        kind: Workload kind (e.g. "Job").
        namespace: Workload namespace.
        name: Name of the failed workload.
        reason: Failure reason reported by the cluster.
    """

    def __init__(self, kind: str, name: str, *, namespace: str, reason: str = "") -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.reason = reason
        message = f"{kind} '{name}' in namespace '{namespace}' failed"
        if reason:
            message = f"{message}: {reason}"
        VerificationError.__init__(self, message)


class WatchFinishedError(VerificationError):
    """Raised when a workload watch that already reached a terminal state is re-run."""

    def __init__(self, target: str, state: str) -> None:
        self.target = target
        self.state = state
        VerificationError.__init__(
            self, f"Watch on {target} already finished in state {state}"
        )


__all__ = [
    "ClusterConnectionError",
    "CredentialMalformedError",
    "CredentialUnavailableError",
    "DeadlineExceededError",
    "QueryTransportError",
    "TunnelClosedError",
    "TunnelSetupError",
    "VerificationError",
    "WatchFinishedError",
    "WorkloadFailedError",
    "WorkloadFetchError",
]
