"""Scenario composition: catalog assertions around the index cleaner.

An IndexCleanerScenario owns its configuration and collaborators; nothing
here reads or writes module-level state, so two scenarios can run side by
side against different namespaces.

Typical flow:
    1. index_with_prefix_exists(prefix, expected=True)
    2. enable the cleaner on the custom resource (caller-supplied callable)
    3. wait_for_index_cleaner(instance_name, namespace)
    4. index_with_prefix_exists(prefix, expected=False)

Example:
    >>> config = VerificationConfig(storage_namespace="storage")
    >>> scenario = IndexCleanerScenario.from_config(config)
    >>> scenario.verify_index_cleanup(
    ...     "simple-prod-jaeger-", enable_cleaner, instance_name="simple-prod",
    ...     namespace="observability",
    ... )
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog
from kubernetes import client

from es_verify.catalog import has_entry_with_prefix, list_catalog
from es_verify.credentials import load_credential_bundle
from es_verify.errors import DeadlineExceededError, QueryTransportError
from es_verify.kube import (
    KubernetesPodLocator,
    KubernetesSecretStore,
    KubernetesWorkloadReader,
    create_api_client,
)
from es_verify.polling import wait_until
from es_verify.portforward import KubectlPortForwarder
from es_verify.tunnel import TunnelManager
from es_verify.workloads import cleaner_job_name, wait_for_cron_job, wait_for_job_of_owner

if TYPE_CHECKING:
    import httpx

    from es_verify.config import VerificationConfig
    from es_verify.credentials import CredentialBundle, SecretStore
    from es_verify.tunnel import Tunnel
    from es_verify.workloads import WorkloadStatusReader

logger = structlog.get_logger(__name__)

# Cron jobs are scheduled at minute granularity
CRON_EXTRA_TIMEOUT = 60.0


class IndexCleanerScenario:
    """Catalog and workload checks for one Elasticsearch deployment.

    Args:
        config: Scenario settings.
        secret_store: Source of the admin TLS secret.
        tunnel_manager: Opens a fresh tunnel for every catalog assertion.
        workload_reader: Reads cron job and job status.
        transport: Optional httpx transport for catalog requests.
    """

    def __init__(
        self,
        config: VerificationConfig,
        *,
        secret_store: SecretStore,
        tunnel_manager: TunnelManager,
        workload_reader: WorkloadStatusReader,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._secret_store = secret_store
        self._tunnel_manager = tunnel_manager
        self._workload_reader = workload_reader
        self._transport = transport

    @classmethod
    def from_config(cls, config: VerificationConfig) -> IndexCleanerScenario:
        """Wire the Kubernetes-backed collaborators described by ``config``.

        Raises:
            ClusterConnectionError: If no Kubernetes configuration could be loaded.
        """
        api_client = create_api_client(config.kubeconfig_path, config.context)
        core_api = client.CoreV1Api(api_client)
        return cls(
            config,
            secret_store=KubernetesSecretStore(core_api),
            tunnel_manager=TunnelManager(
                KubernetesPodLocator(core_api),
                KubectlPortForwarder(config.kubeconfig_path, config.context),
                setup_timeout=config.setup_timeout,
            ),
            workload_reader=KubernetesWorkloadReader.from_api_client(api_client),
        )

    def _credentials(self, namespace: str) -> CredentialBundle | None:
        if not self.config.secure_transport:
            return None
        return load_credential_bundle(self._secret_store, namespace, self.config.secret_name)

    def index_with_prefix_exists(
        self,
        prefix: str,
        expected: bool = True,
        namespace: str | None = None,
    ) -> None:
        """Wait until the presence of an index matching ``prefix`` equals ``expected``.

        Opens one tunnel for the whole wait and closes it on every exit
        path. Credentials are loaded fresh for each call.

        Args:
            prefix: Index-name prefix to look for.
            expected: True to wait for presence, False to wait for absence.
            namespace: Storage namespace; defaults to ``config.storage_namespace``.

        Raises:
            CredentialUnavailableError: If secure transport is on and the secret is missing.
            CredentialMalformedError: If the secret's PEM material is unusable.
            TunnelSetupError: If the tunnel could not be opened.
            QueryTransportError: If a catalog request failed.
            DeadlineExceededError: If the expectation did not hold in time.
        """
        namespace = namespace or self.config.storage_namespace
        credentials = self._credentials(namespace)
        state = "present" if expected else "absent"
        logger.info(
            "verification.index_check_started",
            namespace=namespace,
            prefix=prefix,
            expected=state,
        )

        with self._tunnel_manager.open(
            namespace,
            self.config.service_name,
            self.config.selector_name,
            self.config.remote_port,
        ) as tunnel:

            def check() -> bool:
                return has_entry_with_prefix(
                    tunnel,
                    prefix,
                    credentials,
                    timeout=self.config.query_timeout,
                    transport=self._transport,
                )

            try:
                wait_until(
                    check,
                    self.config.poll_spec(expected),
                    description=f"index with prefix '{prefix}' to be {state} in {namespace}",
                )
            except DeadlineExceededError:
                self._log_catalog_snapshot(tunnel, credentials, prefix)
                raise
        logger.info(
            "verification.index_check_passed",
            namespace=namespace,
            prefix=prefix,
            expected=state,
        )

    def _log_catalog_snapshot(
        self, tunnel: Tunnel, credentials: CredentialBundle | None, prefix: str
    ) -> None:
        try:
            entries = list_catalog(
                tunnel,
                credentials,
                timeout=self.config.query_timeout,
                transport=self._transport,
            )
        except QueryTransportError as e:
            logger.warning("verification.catalog_snapshot_failed", prefix=prefix, error=str(e))
            return
        logger.warning(
            "verification.catalog_snapshot",
            namespace=tunnel.namespace,
            prefix=prefix,
            entries=entries,
        )

    def wait_for_index_cleaner(self, instance_name: str, namespace: str) -> None:
        """Wait for the instance's cleaner CronJob, then for a Job it spawned to complete.

        Raises:
            DeadlineExceededError: If the CronJob or a completed Job did not appear in time.
            WorkloadFailedError: If the cleaner Job failed.
            WorkloadFetchError: If workload status could not be read.
        """
        wait_for_cron_job(
            self._workload_reader,
            namespace,
            instance_name,
            self.config.poll_spec(extra=CRON_EXTRA_TIMEOUT),
        )
        wait_for_job_of_owner(
            self._workload_reader,
            namespace,
            cleaner_job_name(instance_name),
            self.config.poll_spec(extra=CRON_EXTRA_TIMEOUT),
        )
        logger.info("verification.cleaner_completed", namespace=namespace, instance=instance_name)

    def verify_index_cleanup(
        self,
        prefix: str,
        enable_cleaner: Callable[[], None],
        *,
        instance_name: str,
        namespace: str,
    ) -> None:
        """Assert indices exist, enable the cleaner, and assert they are gone after it ran.

        Args:
            prefix: Index-name prefix written by the instance.
            enable_cleaner: Applies the configuration change that turns the cleaner on.
            instance_name: Name of the tracing instance owning the cleaner.
            namespace: Namespace of the instance's workloads.
        """
        self.index_with_prefix_exists(prefix, expected=True)
        enable_cleaner()
        self.wait_for_index_cleaner(instance_name, namespace)
        self.index_with_prefix_exists(prefix, expected=False)


__all__ = ["CRON_EXTRA_TIMEOUT", "IndexCleanerScenario"]
