"""Tunnel lifecycle: open a port-forward to an in-cluster service and close it once.

A Tunnel has exactly one owner and is not shared between scenarios, even
when two scenarios target the same service. Callers use it as a context
manager so the forward is released on every exit path, including when the
check running over it raises.

Example:
    >>> manager = TunnelManager(pod_locator, KubectlPortForwarder())
    >>> with manager.open("storage", "elasticsearch", "elasticsearch", 9200) as tunnel:
    ...     url = f"http://localhost:{tunnel.local_port}/_cat/indices"
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import structlog

from es_verify.errors import (
    ClusterConnectionError,
    DeadlineExceededError,
    TunnelClosedError,
    TunnelSetupError,
)
from es_verify.polling import wait_for_value
from es_verify.tracing import get_tracer, verification_span

if TYPE_CHECKING:
    from types import TracebackType

    from es_verify.portforward import ForwardHandle, PortForwarder

logger = structlog.get_logger(__name__)

DEFAULT_SETUP_TIMEOUT = 60.0
DEFAULT_SETUP_INTERVAL = 1.0
READY_CHECK_INTERVAL = 0.1


class PodLocator(Protocol):
    """Finds a running pod to forward to."""

    def find_pod(self, namespace: str, selector_name: str, name_hint: str) -> str | None:
        """Return the name of a running pod labelled ``app=<selector_name>``.

        Pods whose name contains ``name_hint`` are preferred. Returns None
        when no running pod matches yet.
        """
        ...


class TunnelState(str, Enum):
    """Liveness of a tunnel."""

    OPEN = "open"
    CLOSED = "closed"


class Tunnel:
    """An open forward from an ephemeral local port to a remote service port.

    Attributes:
        namespace: Namespace of the target service.
        service_name: Target service name.
        pod_name: Pod the forward terminates at.
        remote_port: Port inside the pod.
        local_port: OS-assigned local port.
    """

    def __init__(
        self,
        handle: ForwardHandle,
        *,
        namespace: str,
        service_name: str,
        pod_name: str,
        remote_port: int,
        local_port: int,
    ) -> None:
        self.namespace = namespace
        self.service_name = service_name
        self.pod_name = pod_name
        self.remote_port = remote_port
        self.local_port = local_port
        self._handle = handle
        self._state = TunnelState.OPEN
        self._lock = threading.Lock()

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is TunnelState.OPEN

    def ensure_open(self) -> None:
        """Raise TunnelClosedError if the tunnel was already closed."""
        if self._state is TunnelState.CLOSED:
            raise TunnelClosedError(
                namespace=self.namespace,
                service_name=self.service_name,
                remote_port=self.remote_port,
            )

    def close(self) -> None:
        """Release the forward. Idempotent; never raises if the remote side already dropped."""
        with self._lock:
            if self._state is TunnelState.CLOSED:
                return
            self._state = TunnelState.CLOSED
        try:
            self._handle.close()
        except OSError as e:
            # The forward process may already be gone; the port is released either way
            logger.warning(
                "tunnel.close_failed",
                namespace=self.namespace,
                service=self.service_name,
                local_port=self.local_port,
                error=str(e),
            )
        logger.info(
            "tunnel.closed",
            namespace=self.namespace,
            service=self.service_name,
            local_port=self.local_port,
        )

    def __enter__(self) -> Tunnel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Tunnel({self.service_name}:{self.remote_port} in {self.namespace} "
            f"via localhost:{self.local_port}, {self._state.value})"
        )


class TunnelManager:
    """Opens tunnels through a pod locator and a forwarding primitive.

    Args:
        pod_locator: Resolves the service's pods.
        forwarder: Opens the forward to the chosen pod.
        setup_timeout: Seconds allowed for finding a pod and for the forward
            to become ready, each.
        setup_interval: Seconds between pod lookups.
    """

    def __init__(
        self,
        pod_locator: PodLocator,
        forwarder: PortForwarder,
        *,
        setup_timeout: float = DEFAULT_SETUP_TIMEOUT,
        setup_interval: float = DEFAULT_SETUP_INTERVAL,
    ) -> None:
        self._pod_locator = pod_locator
        self._forwarder = forwarder
        self._setup_timeout = setup_timeout
        self._setup_interval = min(setup_interval, setup_timeout)

    def open(
        self,
        namespace: str,
        service_name: str,
        selector_name: str,
        remote_port: int,
    ) -> Tunnel:
        """Open a tunnel and block until it accepts local connections.

        Args:
            namespace: Namespace of the target service.
            service_name: Service name; pods containing it in their name are preferred.
            selector_name: Value of the pods' ``app`` label.
            remote_port: Port inside the pod.

        Returns:
            An open Tunnel. The caller owns it and must close it.

        Raises:
            TunnelSetupError: If no pod matched within the setup window, or
                the forward failed or never became ready.
        """
        with verification_span(
            get_tracer(),
            "tunnel.open",
            namespace=namespace,
            resource=service_name,
            extra_attributes={"tunnel.remote_port": remote_port},
        ) as span:
            pod_name = self._find_pod(namespace, service_name, selector_name, remote_port)
            try:
                handle = self._forwarder.open_forward(namespace, pod_name, [f":{remote_port}"])
            except OSError as e:
                raise TunnelSetupError(
                    namespace=namespace,
                    service_name=service_name,
                    remote_port=remote_port,
                    reason=f"could not start forward: {e}",
                ) from e
            try:
                local_port = self._await_ready(handle, namespace, service_name, remote_port)
            except BaseException:
                handle.close()
                raise

            span.set_attribute("tunnel.local_port", local_port)
            logger.info(
                "tunnel.opened",
                namespace=namespace,
                service=service_name,
                pod=pod_name,
                remote_port=remote_port,
                local_port=local_port,
            )
            return Tunnel(
                handle,
                namespace=namespace,
                service_name=service_name,
                pod_name=pod_name,
                remote_port=remote_port,
                local_port=local_port,
            )

    def _find_pod(
        self,
        namespace: str,
        service_name: str,
        selector_name: str,
        remote_port: int,
    ) -> str:
        found: list[str] = []

        def pod_available() -> bool:
            try:
                pod = self._pod_locator.find_pod(namespace, selector_name, service_name)
            except ClusterConnectionError as e:
                raise TunnelSetupError(
                    namespace=namespace,
                    service_name=service_name,
                    remote_port=remote_port,
                    reason=e.reason,
                ) from e
            if pod is None:
                return False
            found.append(pod)
            return True

        try:
            wait_for_value(
                pod_available,
                True,
                interval=self._setup_interval,
                timeout=self._setup_timeout,
                immediate=True,
                description=f"running pod with app={selector_name} in {namespace}",
            )
        except DeadlineExceededError as e:
            raise TunnelSetupError(
                namespace=namespace,
                service_name=service_name,
                remote_port=remote_port,
                reason=(
                    f"no running pod labelled app={selector_name} "
                    f"after {self._setup_timeout:.1f}s"
                ),
            ) from e
        return found[-1]

    def _await_ready(
        self,
        handle: ForwardHandle,
        namespace: str,
        service_name: str,
        remote_port: int,
    ) -> int:
        def setup_error(reason: str) -> TunnelSetupError:
            return TunnelSetupError(
                namespace=namespace,
                service_name=service_name,
                remote_port=remote_port,
                reason=reason,
            )

        def forward_ready() -> bool:
            if handle.failed.is_set():
                raise setup_error(handle.error or "forward exited during setup")
            return handle.ready.is_set()

        try:
            wait_for_value(
                forward_ready,
                True,
                interval=min(READY_CHECK_INTERVAL, self._setup_timeout),
                timeout=self._setup_timeout,
                immediate=True,
                description=f"port-forward to {service_name}:{remote_port} in {namespace}",
            )
        except DeadlineExceededError as e:
            raise setup_error(f"forward not ready after {self._setup_timeout:.1f}s") from e

        if handle.local_port is None:
            raise setup_error("forward reported ready without a local port")
        return handle.local_port


__all__ = [
    "DEFAULT_SETUP_INTERVAL",
    "DEFAULT_SETUP_TIMEOUT",
    "PodLocator",
    "Tunnel",
    "TunnelManager",
    "TunnelState",
]
