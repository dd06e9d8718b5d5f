"""Pytest configuration for es_verify integration tests.

These tests need a reachable Kubernetes cluster with Elasticsearch deployed
in ``ES_VERIFY_STORAGE_NAMESPACE`` (label ``app=elasticsearch``). Inherits
fixtures from the parent conftest.py.
"""

from __future__ import annotations

import subprocess
import uuid
from typing import TYPE_CHECKING

import pytest

from es_verify.config import VerificationConfig
from es_verify.kube import create_api_client

if TYPE_CHECKING:
    from collections.abc import Generator

    from kubernetes import client


def _kubectl_available() -> bool:
    """Check if kubectl is available and configured."""
    try:
        result = subprocess.run(
            ["kubectl", "cluster-info"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        return result.returncode == 0
    except (subprocess.SubprocessError, FileNotFoundError):
        return False


@pytest.fixture
def kubectl_required() -> None:
    """Fail if kubectl is not available.

    Use this fixture in integration tests that require kubectl.
    """
    if not _kubectl_available():
        pytest.fail(
            "kubectl not available - point KUBECONFIG at a cluster running Elasticsearch"
        )


@pytest.fixture
def live_config(kubectl_required: None) -> VerificationConfig:
    """Scenario config read from the ES_VERIFY_* environment, with short waits."""
    base = VerificationConfig()
    return base.model_copy(update={"retry_interval": 2.0, "timeout": 120.0})


@pytest.fixture
def api_client(live_config: VerificationConfig) -> client.ApiClient:
    return create_api_client(live_config.kubeconfig_path, live_config.context)


@pytest.fixture
def test_namespace(kubectl_required: None) -> Generator[str, None, None]:
    """Create and cleanup a unique K8s namespace for testing.

    Yields:
        Name of the created namespace.
    """
    ns = f"es-verify-test-{uuid.uuid4().hex[:8]}"
    subprocess.run(
        ["kubectl", "create", "namespace", ns],
        capture_output=True,
        check=False,
    )

    yield ns

    subprocess.run(
        ["kubectl", "delete", "namespace", ns, "--ignore-not-found", "--wait=false"],
        capture_output=True,
        check=False,
    )
