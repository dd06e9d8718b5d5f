"""Unit tests for the Kubernetes-backed collaborators.

Requirements Covered:
    - FR-020: Secrets, pods and workload status read through the kubernetes client
"""

from __future__ import annotations

import base64
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from es_verify.errors import (
    ClusterConnectionError,
    CredentialUnavailableError,
    WorkloadFetchError,
)
from es_verify.kube import (
    KubernetesPodLocator,
    KubernetesSecretStore,
    KubernetesWorkloadReader,
    create_api_client,
)
from es_verify.workloads import ReplicaStatus, WorkloadKind


def _pod(name: str, phase: str = "Running", deleting: bool = False) -> Any:
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, deletion_timestamp="now" if deleting else None),
        status=SimpleNamespace(phase=phase),
    )


def _job(
    name: str,
    owner: str,
    *,
    succeeded: int | None = None,
    conditions: list[Any] | None = None,
) -> Any:
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name,
            owner_references=[SimpleNamespace(name=owner, kind="CronJob")],
        ),
        status=SimpleNamespace(succeeded=succeeded, conditions=conditions),
    )


def _condition(
    type_: str,
    status: str = "True",
    reason: str | None = None,
    message: str | None = None,
) -> Any:
    return SimpleNamespace(type=type_, status=status, reason=reason, message=message)


class TestCreateApiClient:
    """Tests for client configuration loading."""

    @pytest.mark.requirement("FR-020")
    def test_explicit_kubeconfig(self) -> None:
        with patch("es_verify.kube.k8s_config.new_client_from_config") as new_client:
            api_client = create_api_client("/home/ci/.kube/config", "kind-e2e")

        new_client.assert_called_once_with(config_file="/home/ci/.kube/config", context="kind-e2e")
        assert api_client is new_client.return_value

    @pytest.mark.requirement("FR-020")
    def test_prefers_in_cluster_config(self) -> None:
        with (
            patch("es_verify.kube.k8s_config.load_incluster_config") as incluster,
            patch("es_verify.kube.k8s_config.new_client_from_config") as new_client,
            patch("es_verify.kube.client.ApiClient") as api_client_cls,
        ):
            api_client = create_api_client()

        incluster.assert_called_once()
        new_client.assert_not_called()
        assert api_client is api_client_cls.return_value

    @pytest.mark.requirement("FR-020")
    def test_falls_back_to_default_kubeconfig(self) -> None:
        with (
            patch(
                "es_verify.kube.k8s_config.load_incluster_config",
                side_effect=k8s_config.ConfigException("not in cluster"),
            ),
            patch("es_verify.kube.k8s_config.new_client_from_config") as new_client,
        ):
            create_api_client(context="kind-e2e")

        new_client.assert_called_once_with(context="kind-e2e")

    @pytest.mark.requirement("FR-020")
    def test_no_configuration_raises_cluster_error(self) -> None:
        with (
            patch(
                "es_verify.kube.k8s_config.load_incluster_config",
                side_effect=k8s_config.ConfigException("not in cluster"),
            ),
            patch(
                "es_verify.kube.k8s_config.new_client_from_config",
                side_effect=k8s_config.ConfigException("Invalid kube-config file"),
            ),
            pytest.raises(ClusterConnectionError, match="Invalid kube-config"),
        ):
            create_api_client()


class TestKubernetesSecretStore:
    """Tests for secret reading."""

    @pytest.mark.requirement("FR-020")
    def test_decodes_secret_data(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.return_value = SimpleNamespace(
            data={"admin-ca": base64.b64encode(b"-----BEGIN CERTIFICATE-----").decode()}
        )

        data = KubernetesSecretStore(api).get_secret_data("storage", "elasticsearch")

        assert data == {"admin-ca": b"-----BEGIN CERTIFICATE-----"}
        api.read_namespaced_secret.assert_called_once_with(
            name="elasticsearch", namespace="storage"
        )

    @pytest.mark.requirement("FR-020")
    def test_not_found_returns_none(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")

        assert KubernetesSecretStore(api).get_secret_data("storage", "elasticsearch") is None

    @pytest.mark.requirement("FR-020")
    def test_empty_secret_returns_empty_mapping(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.return_value = SimpleNamespace(data=None)

        assert KubernetesSecretStore(api).get_secret_data("storage", "elasticsearch") == {}

    @pytest.mark.requirement("FR-020")
    def test_forbidden_raises_unavailable(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(CredentialUnavailableError, match="403 Forbidden"):
            KubernetesSecretStore(api).get_secret_data("storage", "elasticsearch")

    @pytest.mark.requirement("FR-020")
    def test_unreachable_api_server_raises_cluster_error(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.side_effect = MaxRetryError(
            None, "/api/v1/namespaces/storage/secrets/elasticsearch"
        )

        with pytest.raises(ClusterConnectionError, match="storage/elasticsearch"):
            KubernetesSecretStore(api).get_secret_data("storage", "elasticsearch")


class TestKubernetesPodLocator:
    """Tests for pod lookup."""

    @pytest.mark.requirement("FR-020")
    def test_prefers_running_pod_matching_hint(self) -> None:
        api = MagicMock()
        api.list_namespaced_pod.return_value = SimpleNamespace(
            items=[
                _pod("es-data-0"),
                _pod("elasticsearch-cdm-1"),
                _pod("elasticsearch-cdm-0", phase="Pending"),
            ]
        )

        pod = KubernetesPodLocator(api).find_pod("storage", "elasticsearch", "elasticsearch")

        assert pod == "elasticsearch-cdm-1"
        api.list_namespaced_pod.assert_called_once_with(
            namespace="storage", label_selector="app=elasticsearch"
        )

    @pytest.mark.requirement("FR-020")
    def test_falls_back_to_any_running_pod(self) -> None:
        api = MagicMock()
        api.list_namespaced_pod.return_value = SimpleNamespace(items=[_pod("es-data-0")])

        pod = KubernetesPodLocator(api).find_pod("storage", "elasticsearch", "elasticsearch")

        assert pod == "es-data-0"

    @pytest.mark.requirement("FR-020")
    def test_ignores_terminating_pods(self) -> None:
        api = MagicMock()
        api.list_namespaced_pod.return_value = SimpleNamespace(
            items=[_pod("elasticsearch-0", deleting=True)]
        )

        pod = KubernetesPodLocator(api).find_pod("storage", "elasticsearch", "elasticsearch")

        assert pod is None

    @pytest.mark.requirement("FR-020")
    def test_api_error_raises_cluster_error(self) -> None:
        api = MagicMock()
        api.list_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ClusterConnectionError, match="403"):
            KubernetesPodLocator(api).find_pod("storage", "elasticsearch", "elasticsearch")

    @pytest.mark.requirement("FR-020")
    def test_connection_refused_raises_cluster_error(self) -> None:
        api = MagicMock()
        api.list_namespaced_pod.side_effect = ConnectionRefusedError(111, "Connection refused")

        with pytest.raises(ClusterConnectionError, match="Connection refused"):
            KubernetesPodLocator(api).find_pod("storage", "elasticsearch", "elasticsearch")


class TestKubernetesWorkloadReader:
    """Tests for workload status reads."""

    @pytest.fixture
    def apps_api(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def batch_api(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def reader(self, apps_api: MagicMock, batch_api: MagicMock) -> KubernetesWorkloadReader:
        return KubernetesWorkloadReader(apps_api, batch_api)

    @pytest.mark.requirement("FR-020")
    def test_deployment_replica_status(
        self, reader: KubernetesWorkloadReader, apps_api: MagicMock
    ) -> None:
        apps_api.read_namespaced_deployment.return_value = SimpleNamespace(
            spec=SimpleNamespace(replicas=2),
            status=SimpleNamespace(ready_replicas=1),
        )

        status = reader.replica_status(WorkloadKind.DEPLOYMENT, "observability", "query")

        assert status == ReplicaStatus(desired=2, ready=1)

    @pytest.mark.requirement("FR-020")
    def test_stateful_set_defaults(
        self, reader: KubernetesWorkloadReader, apps_api: MagicMock
    ) -> None:
        apps_api.read_namespaced_stateful_set.return_value = SimpleNamespace(
            spec=SimpleNamespace(replicas=None),
            status=SimpleNamespace(ready_replicas=None),
        )

        status = reader.replica_status(WorkloadKind.STATEFUL_SET, "storage", "elasticsearch")

        assert status == ReplicaStatus(desired=1, ready=0)

    @pytest.mark.requirement("FR-020")
    def test_missing_deployment_returns_none(
        self, reader: KubernetesWorkloadReader, apps_api: MagicMock
    ) -> None:
        apps_api.read_namespaced_deployment.side_effect = ApiException(status=404)

        assert reader.replica_status(WorkloadKind.DEPLOYMENT, "observability", "query") is None

    @pytest.mark.requirement("FR-020")
    def test_deployment_api_error_raises_fetch_error(
        self, reader: KubernetesWorkloadReader, apps_api: MagicMock
    ) -> None:
        apps_api.read_namespaced_deployment.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(WorkloadFetchError) as exc_info:
            reader.replica_status(WorkloadKind.DEPLOYMENT, "observability", "query")

        assert exc_info.value.kind == "Deployment"
        assert exc_info.value.name == "query"

    @pytest.mark.requirement("FR-020")
    def test_replica_status_rejects_job_kinds(self, reader: KubernetesWorkloadReader) -> None:
        with pytest.raises(ValueError, match="no replica status"):
            reader.replica_status(WorkloadKind.CRON_JOB, "observability", "cleaner")

    @pytest.mark.requirement("FR-020")
    def test_cron_job_exists(self, reader: KubernetesWorkloadReader, batch_api: MagicMock) -> None:
        assert reader.cron_job_exists("observability", "simple-prod-es-index-cleaner") is True
        batch_api.read_namespaced_cron_job.assert_called_once_with(
            name="simple-prod-es-index-cleaner", namespace="observability"
        )

    @pytest.mark.requirement("FR-020")
    def test_cron_job_missing(self, reader: KubernetesWorkloadReader, batch_api: MagicMock) -> None:
        batch_api.read_namespaced_cron_job.side_effect = ApiException(status=404)

        assert reader.cron_job_exists("observability", "simple-prod-es-index-cleaner") is False

    @pytest.mark.requirement("FR-020")
    def test_cron_job_api_error(
        self, reader: KubernetesWorkloadReader, batch_api: MagicMock
    ) -> None:
        batch_api.read_namespaced_cron_job.side_effect = ApiException(
            status=401, reason="Unauthorized"
        )

        with pytest.raises(WorkloadFetchError, match="401 Unauthorized"):
            reader.cron_job_exists("observability", "simple-prod-es-index-cleaner")

    @pytest.mark.requirement("FR-020")
    def test_jobs_owned_by_filters_and_maps_status(
        self, reader: KubernetesWorkloadReader, batch_api: MagicMock
    ) -> None:
        owner = "simple-prod-es-index-cleaner"
        batch_api.list_namespaced_job.return_value = SimpleNamespace(
            items=[
                _job("cleaner-1", owner, succeeded=1, conditions=[_condition("Complete")]),
                _job(
                    "cleaner-2",
                    owner,
                    conditions=[
                        _condition(
                            "Failed", reason="BackoffLimitExceeded", message="too many retries"
                        )
                    ],
                ),
                _job("other-1", "simple-prod-rollover"),
            ]
        )

        jobs = reader.jobs_owned_by("observability", owner)

        assert [job.name for job in jobs] == ["cleaner-1", "cleaner-2"]
        assert jobs[0].complete
        assert not jobs[0].failed
        assert jobs[1].failed
        assert jobs[1].failure_reason == "BackoffLimitExceeded: too many retries"

    @pytest.mark.requirement("FR-020")
    def test_false_conditions_are_not_terminal(
        self, reader: KubernetesWorkloadReader, batch_api: MagicMock
    ) -> None:
        owner = "simple-prod-es-index-cleaner"
        batch_api.list_namespaced_job.return_value = SimpleNamespace(
            items=[_job("cleaner-1", owner, conditions=[_condition("Failed", status="False")])]
        )

        (job,) = reader.jobs_owned_by("observability", owner)

        assert not job.failed
        assert not job.complete

    @pytest.mark.requirement("FR-020")
    def test_job_list_error(self, reader: KubernetesWorkloadReader, batch_api: MagicMock) -> None:
        batch_api.list_namespaced_job.side_effect = ApiException(status=500, reason="boom")

        with pytest.raises(WorkloadFetchError):
            reader.jobs_owned_by("observability", "simple-prod-es-index-cleaner")

    @pytest.mark.requirement("FR-020")
    def test_unreachable_api_server_raises_fetch_error(
        self, reader: KubernetesWorkloadReader, apps_api: MagicMock, batch_api: MagicMock
    ) -> None:
        apps_api.read_namespaced_deployment.side_effect = MaxRetryError(None, "/apis/apps/v1")
        batch_api.read_namespaced_cron_job.side_effect = MaxRetryError(None, "/apis/batch/v1")
        batch_api.list_namespaced_job.side_effect = MaxRetryError(None, "/apis/batch/v1")

        with pytest.raises(WorkloadFetchError):
            reader.replica_status(WorkloadKind.DEPLOYMENT, "observability", "query")
        with pytest.raises(WorkloadFetchError):
            reader.cron_job_exists("observability", "simple-prod-es-index-cleaner")
        with pytest.raises(WorkloadFetchError):
            reader.jobs_owned_by("observability", "simple-prod-es-index-cleaner")
