"""Pytest configuration for es_verify tests.

Fixtures:
    - fake_clock: Deterministic monotonic clock patched into the poll engine
    - secret_store / tls_material: In-memory secret store and minted PEM blobs
    - pod_locator / port_forwarder: Fakes behind the tunnel manager
    - workload_reader: Scripted workload status

The fake classes live in tests/fakes.py.
"""

from __future__ import annotations

import datetime
from collections.abc import Iterator

import pytest
import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from fakes import (
    FakeClock,
    FakePodLocator,
    FakePortForwarder,
    FakeSecretStore,
    FakeWorkloadReader,
)

from es_verify.tracing import reset_tracer


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test with requirement ID for traceability",
    )
    config.addinivalue_line(
        "markers",
        "integration: Integration tests requiring a Kubernetes cluster with Elasticsearch",
    )


@pytest.fixture(autouse=True)
def reset_observability() -> Iterator[None]:
    """Reset structlog configuration and cached tracers around each test."""
    yield
    structlog.reset_defaults()
    reset_tracer()


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Patch the poll engine's clock with a FakeClock."""
    clock = FakeClock()
    monkeypatch.setattr("es_verify.polling.time", clock)
    return clock


# =============================================================================
# Credentials
# =============================================================================


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _pem_key(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def tls_material() -> dict[str, bytes]:
    """Mint a CA, a client cert signed by it, and an unrelated key.

    Returns:
        Dict with ``ca``, ``cert``, ``key`` and ``other_key`` PEM blobs.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("es-verify-test-ca"))
        .issuer_name(_name("es-verify-test-ca"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )
    client_key = ec.generate_private_key(ec.SECP256R1())
    client_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("admin"))
        .issuer_name(ca_cert.subject)
        .public_key(client_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(ca_key, hashes.SHA256())
    )
    return {
        "ca": ca_cert.public_bytes(serialization.Encoding.PEM),
        "cert": client_cert.public_bytes(serialization.Encoding.PEM),
        "key": _pem_key(client_key),
        "other_key": _pem_key(ec.generate_private_key(ec.SECP256R1())),
    }


@pytest.fixture
def admin_secret(tls_material: dict[str, bytes]) -> dict[str, bytes]:
    """Decoded data of a well-formed admin TLS secret."""
    return {
        "admin-ca": tls_material["ca"],
        "admin-cert": tls_material["cert"],
        "admin-key": tls_material["key"],
    }


@pytest.fixture
def secret_store(admin_secret: dict[str, bytes]) -> FakeSecretStore:
    """Secret store holding ``storage/elasticsearch``."""
    return FakeSecretStore(secrets={("storage", "elasticsearch"): admin_secret})


# =============================================================================
# Tunnel collaborators and workloads
# =============================================================================


@pytest.fixture
def pod_locator() -> FakePodLocator:
    return FakePodLocator()


@pytest.fixture
def port_forwarder() -> FakePortForwarder:
    return FakePortForwarder()


@pytest.fixture
def workload_reader() -> FakeWorkloadReader:
    return FakeWorkloadReader()
