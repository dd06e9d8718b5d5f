"""Credential bundle loading for mutual-TLS catalog queries.

The Elasticsearch admin secret carries three PEM blobs: the CA certificate
(``admin-ca``), the client certificate (``admin-cert``) and its private key
(``admin-key``). load_credential_bundle() reads them through the narrow
SecretStore interface, validates them with ``cryptography`` and returns an
immutable CredentialBundle. Bundles are never cached: certificates may
rotate between runs, so every verification call loads a fresh one.

Example:
    >>> from es_verify.credentials import load_credential_bundle
    >>> bundle = load_credential_bundle(store, "storage")
    >>> context = bundle.ssl_context()
"""

from __future__ import annotations

import ssl
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import structlog
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from es_verify.errors import CredentialMalformedError, CredentialUnavailableError

logger = structlog.get_logger(__name__)

DEFAULT_SECRET_NAME = "elasticsearch"
CA_KEY = "admin-ca"
CERT_KEY = "admin-cert"
PRIVATE_KEY_KEY = "admin-key"
REQUIRED_KEYS = (CA_KEY, CERT_KEY, PRIVATE_KEY_KEY)


class SecretStore(Protocol):
    """Read-only access to secrets, keyed by namespace and name."""

    def get_secret_data(self, namespace: str, name: str) -> Mapping[str, bytes] | None:
        """Return the decoded secret data, or None if the secret does not exist."""
        ...


@dataclass(frozen=True)
class CredentialBundle:
    """Trust anchors plus client certificate/key for mutual TLS.

    Attributes:
        ca_pem: PEM-encoded CA certificate(s) trusted for the server.
        cert_pem: PEM-encoded client certificate.
        key_pem: PEM-encoded client private key.
    """

    ca_pem: bytes = field(repr=False)
    cert_pem: bytes = field(repr=False)
    key_pem: bytes = field(repr=False)

    def ssl_context(self) -> ssl.SSLContext:
        """Build a client SSLContext trusting ca_pem and presenting the client cert.

        The ssl module only loads certificate chains from files, so the
        cert and key are written to a private temporary directory that is
        removed before this method returns.
        """
        context = ssl.create_default_context(cadata=self.ca_pem.decode("ascii"))
        with tempfile.TemporaryDirectory(prefix="es-verify-") as tmp:
            cert_path = Path(tmp) / "client.crt"
            key_path = Path(tmp) / "client.key"
            cert_path.write_bytes(self.cert_pem)
            key_path.write_bytes(self.key_pem)
            context.load_cert_chain(certfile=cert_path, keyfile=key_path)
        return context


def load_credential_bundle(
    store: SecretStore,
    namespace: str,
    secret_name: str = DEFAULT_SECRET_NAME,
) -> CredentialBundle:
    """Load and validate the TLS bundle from a secret.

    Args:
        store: Secret store to read from.
        namespace: Namespace holding the secret.
        secret_name: Secret name. Defaults to "elasticsearch".

    Returns:
        Validated CredentialBundle.

    Raises:
        CredentialUnavailableError: If the secret or a required key is missing.
        CredentialMalformedError: If a blob does not parse or the client
            key does not belong to the client certificate.
    """
    data = store.get_secret_data(namespace, secret_name)
    if data is None:
        logger.error("credentials.secret_missing", namespace=namespace, secret=secret_name)
        raise CredentialUnavailableError(secret_name, namespace=namespace)

    missing = tuple(key for key in REQUIRED_KEYS if not data.get(key))
    if missing:
        logger.error(
            "credentials.keys_missing",
            namespace=namespace,
            secret=secret_name,
            missing=list(missing),
        )
        raise CredentialUnavailableError(secret_name, namespace=namespace, missing_keys=missing)

    ca_pem = bytes(data[CA_KEY])
    cert_pem = bytes(data[CERT_KEY])
    key_pem = bytes(data[PRIVATE_KEY_KEY])

    def malformed(key: str, reason: str) -> CredentialMalformedError:
        logger.error(
            "credentials.malformed",
            namespace=namespace,
            secret=secret_name,
            field=key,
        )
        return CredentialMalformedError(
            secret_name, namespace=namespace, field=key, reason=reason
        )

    try:
        ca_certificates = x509.load_pem_x509_certificates(ca_pem)
    except ValueError as e:
        raise malformed(CA_KEY, f"invalid CA certificate: {e}") from e

    try:
        certificate = x509.load_pem_x509_certificate(cert_pem)
    except ValueError as e:
        raise malformed(CERT_KEY, f"invalid client certificate: {e}") from e

    try:
        private_key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise malformed(PRIVATE_KEY_KEY, f"invalid private key: {e}") from e

    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    der = serialization.Encoding.DER
    if certificate.public_key().public_bytes(der, spki) != private_key.public_key().public_bytes(
        der, spki
    ):
        raise malformed(PRIVATE_KEY_KEY, "private key does not match the client certificate")

    # Re-encode so text outside the PEM markers never reaches the ssl module
    pem = serialization.Encoding.PEM
    bundle = CredentialBundle(
        ca_pem=b"".join(ca.public_bytes(pem) for ca in ca_certificates),
        cert_pem=certificate.public_bytes(pem),
        key_pem=private_key.private_bytes(
            pem,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ),
    )
    try:
        bundle.ssl_context()
    except (ssl.SSLError, ValueError) as e:
        raise malformed(CA_KEY, f"unusable for TLS: {e}") from e

    logger.debug("credentials.loaded", namespace=namespace, secret=secret_name)
    return bundle


__all__ = [
    "CA_KEY",
    "CERT_KEY",
    "DEFAULT_SECRET_NAME",
    "PRIVATE_KEY_KEY",
    "REQUIRED_KEYS",
    "CredentialBundle",
    "SecretStore",
    "load_credential_bundle",
]
