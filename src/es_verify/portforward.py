"""Port-forwarding primitive backed by ``kubectl port-forward``.

The forward is requested with an empty local port (``:9200``) so the OS
assigns an ephemeral port; concurrently open tunnels never collide. A
reader thread watches kubectl's stdout for the
``Forwarding from 127.0.0.1:<local> -> <remote>`` line, which is both the
readiness signal and the only way to learn the assigned port.
"""

from __future__ import annotations

import re
import subprocess
import threading
from collections import deque
from collections.abc import Sequence
from typing import IO, Protocol

import structlog

logger = structlog.get_logger(__name__)

FORWARDING_PATTERN = re.compile(r"Forwarding from 127\.0\.0\.1:(?P<local>\d+) -> (?P<remote>\d+)")

# Seconds to wait for kubectl to exit after SIGTERM before killing it
TERMINATE_TIMEOUT = 5.0

# kubectl output lines kept for error reporting
OUTPUT_TAIL_LINES = 20


class ForwardHandle(Protocol):
    """An open (or opening) forward.

    Attributes:
        ready: Set once the forward accepts local connections.
        failed: Set if the forward died before or after becoming ready.
        error: Failure detail when ``failed`` is set.
        local_port: OS-assigned local port, None until ready.
    """

    ready: threading.Event
    failed: threading.Event
    error: str | None
    local_port: int | None

    def close(self) -> None:
        """Stop forwarding and release the local port. Safe to call repeatedly."""
        ...


class PortForwarder(Protocol):
    """Opens forwards from a local port to a pod port."""

    def open_forward(self, namespace: str, pod_name: str, ports: Sequence[str]) -> ForwardHandle:
        """Start forwarding ``ports`` (``"[local]:remote"`` specs) to a pod."""
        ...


class KubectlForward:
    """ForwardHandle for a running ``kubectl port-forward`` process.

    kubectl's stderr is merged into stdout and drained by the reader thread
    for the lifetime of the process, so a chatty forward never blocks on a
    full pipe. The last lines of output become the error detail if the
    process exits on its own.
    """

    def __init__(self, process: subprocess.Popen[str], *, namespace: str, pod_name: str) -> None:
        self.ready = threading.Event()
        self.failed = threading.Event()
        self.error: str | None = None
        self.local_port: int | None = None
        self._process = process
        self._namespace = namespace
        self._pod_name = pod_name
        self._output: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        self._close_lock = threading.Lock()
        self._closed = False
        self._reader = threading.Thread(
            target=self._read_output,
            name=f"port-forward-{pod_name}",
            daemon=True,
        )
        self._reader.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def _read_output(self) -> None:
        output: IO[str] | None = self._process.stdout
        if output is not None:
            for line in output:
                match = FORWARDING_PATTERN.search(line)
                if match is None:
                    self._output.append(line.strip())
                    continue
                if not self.ready.is_set():
                    self.local_port = int(match.group("local"))
                    self.ready.set()
                    logger.debug(
                        "port_forward.ready",
                        namespace=self._namespace,
                        pod=self._pod_name,
                        local_port=self.local_port,
                    )

        returncode = self._process.wait()
        if self._closed:
            return
        detail = "; ".join(line for line in self._output if line)
        self.error = detail or f"kubectl port-forward exited with code {returncode}"
        self.failed.set()
        logger.warning(
            "port_forward.exited",
            namespace=self._namespace,
            pod=self._pod_name,
            returncode=returncode,
            error=self.error,
        )

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait()
        # Terminated process closes its end of the pipe; the reader sees EOF
        self._reader.join(timeout=TERMINATE_TIMEOUT)
        logger.debug("port_forward.closed", namespace=self._namespace, pod=self._pod_name)


class KubectlPortForwarder:
    """PortForwarder that shells out to kubectl.

    Args:
        kubeconfig_path: Kubeconfig passed to kubectl. None uses kubectl's default.
        context: Kubeconfig context. None uses the current context.
        kubectl: kubectl executable.
    """

    def __init__(
        self,
        kubeconfig_path: str | None = None,
        context: str | None = None,
        kubectl: str = "kubectl",
    ) -> None:
        self._kubeconfig_path = kubeconfig_path
        self._context = context
        self._kubectl = kubectl

    def build_command(self, namespace: str, pod_name: str, ports: Sequence[str]) -> list[str]:
        """Build the kubectl argv for a forward."""
        command = [self._kubectl]
        if self._kubeconfig_path:
            command += ["--kubeconfig", self._kubeconfig_path]
        if self._context:
            command += ["--context", self._context]
        command += [
            "port-forward",
            "--namespace",
            namespace,
            "--address",
            "127.0.0.1",
            f"pod/{pod_name}",
            *ports,
        ]
        return command

    def open_forward(self, namespace: str, pod_name: str, ports: Sequence[str]) -> KubectlForward:
        command = self.build_command(namespace, pod_name, ports)
        logger.debug("port_forward.starting", namespace=namespace, pod=pod_name, ports=list(ports))
        process = subprocess.Popen(  # noqa: S603
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        return KubectlForward(process, namespace=namespace, pod_name=pod_name)


__all__ = [
    "FORWARDING_PATTERN",
    "ForwardHandle",
    "KubectlForward",
    "KubectlPortForwarder",
    "PortForwarder",
]
