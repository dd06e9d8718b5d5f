"""Kubernetes-backed implementations of the collaborator interfaces.

- KubernetesSecretStore: SecretStore over CoreV1Api secrets
- KubernetesPodLocator: PodLocator over CoreV1Api pods
- KubernetesWorkloadReader: WorkloadStatusReader over AppsV1Api/BatchV1Api

Each class takes an already configured API object, so tests substitute a
MagicMock and scenarios can share one ApiClient built by create_api_client().

Example:
    >>> api_client = create_api_client(kubeconfig_path="~/.kube/config")
    >>> store = KubernetesSecretStore(client.CoreV1Api(api_client))
    >>> store.get_secret_data("storage", "elasticsearch").keys()
    dict_keys(['admin-ca', 'admin-cert', 'admin-key'])
"""

from __future__ import annotations

import base64
import binascii

import structlog
import urllib3
from kubernetes import client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException

from es_verify.errors import (
    ClusterConnectionError,
    CredentialUnavailableError,
    WorkloadFetchError,
)
from es_verify.workloads import JobStatus, ReplicaStatus, WorkloadKind

logger = structlog.get_logger(__name__)

# Raised by the client when the API server cannot be reached at all
_TRANSPORT_ERRORS = (urllib3.exceptions.HTTPError, OSError)


def create_api_client(
    kubeconfig_path: str | None = None,
    context: str | None = None,
) -> client.ApiClient:
    """Build an ApiClient without touching the global kubernetes configuration.

    Loading order:
    1. Explicit kubeconfig path
    2. In-cluster configuration
    3. Default kubeconfig (~/.kube/config)

    Raises:
        ClusterConnectionError: If no configuration could be loaded.
    """
    try:
        if kubeconfig_path:
            api_client = k8s_config.new_client_from_config(
                config_file=kubeconfig_path,
                context=context,
            )
            logger.info("kube.config_loaded", kubeconfig_path=kubeconfig_path, context=context)
            return api_client

        try:
            configuration = client.Configuration()
            k8s_config.load_incluster_config(client_configuration=configuration)
        except k8s_config.ConfigException:
            api_client = k8s_config.new_client_from_config(context=context)
            logger.info("kube.default_config_loaded", context=context)
            return api_client
        logger.info("kube.incluster_config_loaded")
        return client.ApiClient(configuration)
    except (k8s_config.ConfigException, OSError) as e:
        logger.error("kube.config_failed", error=str(e))
        raise ClusterConnectionError(str(e)) from e


class KubernetesSecretStore:
    """SecretStore reading base64-encoded data from Kubernetes Secrets."""

    def __init__(self, core_api: client.CoreV1Api) -> None:
        self._api = core_api

    def get_secret_data(self, namespace: str, name: str) -> dict[str, bytes] | None:
        try:
            secret = self._api.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise CredentialUnavailableError(
                name, namespace=namespace, reason=f"{e.status} {e.reason}"
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise ClusterConnectionError(f"reading secret {namespace}/{name}: {e}") from e

        if not secret.data:
            return {}
        try:
            return {key: base64.b64decode(value) for key, value in secret.data.items()}
        except (binascii.Error, ValueError) as e:
            raise CredentialUnavailableError(
                name, namespace=namespace, reason=f"undecodable secret data: {e}"
            ) from e


class KubernetesPodLocator:
    """PodLocator listing pods by their ``app`` label."""

    def __init__(self, core_api: client.CoreV1Api) -> None:
        self._api = core_api

    def find_pod(self, namespace: str, selector_name: str, name_hint: str) -> str | None:
        try:
            pods = self._api.list_namespaced_pod(
                namespace=namespace,
                label_selector=f"app={selector_name}",
            )
        except ApiException as e:
            raise ClusterConnectionError(
                f"listing pods app={selector_name} in {namespace}: {e.status} {e.reason}"
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise ClusterConnectionError(
                f"listing pods app={selector_name} in {namespace}: {e}"
            ) from e

        running = sorted(
            pod.metadata.name
            for pod in pods.items
            if pod.status is not None
            and pod.status.phase == "Running"
            and pod.metadata.deletion_timestamp is None
        )
        if not running:
            return None
        preferred = [name for name in running if name_hint in name]
        return (preferred or running)[0]


class KubernetesWorkloadReader:
    """WorkloadStatusReader backed by the apps/v1 and batch/v1 APIs."""

    def __init__(self, apps_api: client.AppsV1Api, batch_api: client.BatchV1Api) -> None:
        self._apps = apps_api
        self._batch = batch_api

    @classmethod
    def from_api_client(cls, api_client: client.ApiClient) -> KubernetesWorkloadReader:
        return cls(client.AppsV1Api(api_client), client.BatchV1Api(api_client))

    def replica_status(
        self, kind: WorkloadKind, namespace: str, name: str
    ) -> ReplicaStatus | None:
        if kind is WorkloadKind.DEPLOYMENT:
            read = self._apps.read_namespaced_deployment
        elif kind is WorkloadKind.STATEFUL_SET:
            read = self._apps.read_namespaced_stateful_set
        else:
            msg = f"{kind.value} has no replica status"
            raise ValueError(msg)

        try:
            resource = read(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise WorkloadFetchError(
                kind.value, name, namespace=namespace, reason=f"{e.status} {e.reason}"
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise WorkloadFetchError(kind.value, name, namespace=namespace, reason=str(e)) from e

        desired = resource.spec.replicas if resource.spec.replicas is not None else 1
        ready = (resource.status.ready_replicas or 0) if resource.status is not None else 0
        return ReplicaStatus(desired=desired, ready=ready)

    def cron_job_exists(self, namespace: str, name: str) -> bool:
        try:
            self._batch.read_namespaced_cron_job(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise WorkloadFetchError(
                WorkloadKind.CRON_JOB.value,
                name,
                namespace=namespace,
                reason=f"{e.status} {e.reason}",
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise WorkloadFetchError(
                WorkloadKind.CRON_JOB.value, name, namespace=namespace, reason=str(e)
            ) from e
        return True

    def jobs_owned_by(self, namespace: str, owner_name: str) -> list[JobStatus]:
        try:
            jobs = self._batch.list_namespaced_job(namespace=namespace)
        except ApiException as e:
            raise WorkloadFetchError(
                WorkloadKind.JOB.value,
                f"owned by {owner_name}",
                namespace=namespace,
                reason=f"{e.status} {e.reason}",
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise WorkloadFetchError(
                WorkloadKind.JOB.value,
                f"owned by {owner_name}",
                namespace=namespace,
                reason=str(e),
            ) from e

        owned: list[JobStatus] = []
        for job in jobs.items:
            owners = job.metadata.owner_references or []
            if not any(ref.name == owner_name for ref in owners):
                continue
            owned.append(_job_status(job))
        return owned


def _job_status(job: client.V1Job) -> JobStatus:
    status = job.status
    conditions: dict[str, bool] = {}
    failure_reason = ""
    if status is not None:
        for condition in status.conditions or []:
            conditions[condition.type] = condition.status == "True"
            if condition.type == "Failed" and condition.status == "True":
                failure_reason = ": ".join(
                    part for part in (condition.reason, condition.message) if part
                )
    return JobStatus(
        name=job.metadata.name,
        succeeded=(status.succeeded or 0) if status is not None else 0,
        conditions=conditions,
        failure_reason=failure_reason,
    )


__all__ = [
    "KubernetesPodLocator",
    "KubernetesSecretStore",
    "KubernetesWorkloadReader",
    "create_api_client",
]
