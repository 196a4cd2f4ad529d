"""Unit tests for lib/kube_client.py.

Tests cover KubeClient initialization, listing, status reads, exec and
dry-run mutations against mocked Kubernetes APIs.
"""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from lib.exceptions import TransientRemoteError, WorkloadNotFound
from lib.kube_client import ExecResult, KubeClient, has_true_condition, is_retryable_error
from lib.validation import ValidationError


def _items(*dicts):
    result = MagicMock()
    result.items = []
    for d in dicts:
        item = MagicMock()
        item.to_dict.return_value = d
        result.items.append(item)
    return result


def _pod(name, phase="Running"):
    return {"metadata": {"name": name}, "status": {"phase": phase}}


@pytest.fixture
def mock_k8s_apis():
    """Mock Kubernetes API clients."""
    with patch("lib.kube_client.config.load_kube_config") as mock_config, patch(
        "lib.kube_client.client.CoreV1Api"
    ) as mock_core_cls, patch("lib.kube_client.client.AppsV1Api") as mock_apps_cls, patch(
        "lib.kube_client.client.BatchV1Api"
    ) as mock_batch_cls, patch(
        "lib.kube_client.client.VersionApi"
    ) as mock_version_cls:
        yield {
            "config": mock_config,
            "core_api": mock_core_cls.return_value,
            "apps_api": mock_apps_cls.return_value,
            "batch_api": mock_batch_cls.return_value,
            "version_api": mock_version_cls.return_value,
        }


@pytest.fixture
def kube_client(mock_k8s_apis):
    return KubeClient(context="test-context", dry_run=False)


@pytest.fixture
def dry_run_client(mock_k8s_apis):
    return KubeClient(context="test-context", dry_run=True)


@pytest.mark.unit
class TestRetryClassification:
    @pytest.mark.parametrize("status,expected", [(500, True), (503, True), (429, True), (404, False), (403, False)])
    def test_api_exception_status(self, status, expected):
        assert is_retryable_error(ApiException(status=status)) is expected

    def test_other_exceptions_not_retried(self):
        assert is_retryable_error(ValueError("boom")) is False


@pytest.mark.unit
class TestKubeClientReads:
    def test_loads_requested_context(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["config"].assert_called_once_with(context="test-context")
        assert kube_client.context == "test-context"

    def test_list_pods_returns_dicts(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].list_namespaced_pod.return_value = _items(_pod("app-1"), _pod("app-2"))

        pods = kube_client.get_pods("llm-analytics-hub", "app=llm-analytics-hub")

        assert [p["metadata"]["name"] for p in pods] == ["app-1", "app-2"]
        mock_k8s_apis["core_api"].list_namespaced_pod.assert_called_once_with(
            namespace="llm-analytics-hub", label_selector="app=llm-analytics-hub"
        )

    def test_list_missing_namespace_is_empty(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].list_namespaced_service.side_effect = ApiException(status=404)

        assert kube_client.list_resources("services", "missing") == []

    def test_list_forbidden_raises(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].list_namespaced_secret.side_effect = ApiException(status=403)

        with pytest.raises(ApiException):
            kube_client.list_resources("secrets", "llm-analytics-hub")

    def test_list_unknown_kind_rejected(self, kube_client):
        with pytest.raises(ValidationError):
            kube_client.list_resources("widgets", "llm-analytics-hub")

    def test_list_namespaced_kind_requires_namespace(self, kube_client):
        with pytest.raises(ValidationError):
            kube_client.list_resources("pods")

    def test_list_nodes(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].list_node.return_value = _items({"metadata": {"name": "node-1"}})

        assert kube_client.list_nodes()[0]["metadata"]["name"] == "node-1"

    def test_find_running_pod_skips_pending(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].list_namespaced_pod.return_value = _items(
            _pod("db-0", "Pending"), _pod("db-1", "Running")
        )

        assert kube_client.find_running_pod("llm-analytics-hub", "app=timescaledb") == "db-1"

    def test_namespace_exists(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].read_namespace.return_value.to_dict.return_value = {"metadata": {"name": "ns"}}
        assert kube_client.namespace_exists("ns") is True

        mock_k8s_apis["core_api"].read_namespace.side_effect = ApiException(status=404)
        assert kube_client.namespace_exists("ns") is False

    def test_get_resource_status_missing_returns_none(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["apps_api"].read_namespaced_deployment_status.side_effect = ApiException(status=404)

        assert kube_client.get_resource_status("deployments", "api", "llm-analytics-hub") is None

    def test_wait_for_deleted_condition(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].read_namespace_status.side_effect = ApiException(status=404)

        assert kube_client.wait_for_condition("namespaces", "old-ns", "Deleted", timeout=1, interval=0.01) is True

    def test_wait_for_status_condition(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["apps_api"].read_namespaced_deployment_status.return_value.to_dict.return_value = {
            "status": {"conditions": [{"type": "Available", "status": "True"}]}
        }

        assert kube_client.wait_for_condition(
            "deployments", "api", "Available", timeout=1, namespace="llm-analytics-hub", interval=0.01
        )

    def test_is_accessible(self, kube_client, mock_k8s_apis):
        assert kube_client.is_accessible() is True

        mock_k8s_apis["version_api"].get_code.side_effect = ApiException(status=401)
        assert kube_client.is_accessible() is False

    def test_has_true_condition(self):
        resource = {"status": {"conditions": [{"type": "Ready", "status": "False"}]}}
        assert has_true_condition(resource, "Ready") is False


@pytest.mark.unit
class TestKubeClientExec:
    def _stream_response(self, stdout="", stderr="", returncode=0):
        resp = MagicMock()
        resp.is_open.side_effect = [True, False]
        resp.peek_stdout.side_effect = [bool(stdout), False, False, False]
        resp.read_stdout.return_value = stdout
        resp.peek_stderr.side_effect = [bool(stderr), False, False, False]
        resp.read_stderr.return_value = stderr
        resp.returncode = returncode
        return resp

    def test_exec_collects_output(self, kube_client):
        resp = self._stream_response(stdout="accepting connections\n")
        with patch("lib.kube_client.stream", return_value=resp):
            result = kube_client.exec_in_pod("llm-analytics-hub", "db-0", ["pg_isready"])

        assert result == ExecResult(pod="db-0", stdout="accepting connections\n", stderr="", exit_code=0)
        assert result.ok
        resp.close.assert_called_once()

    def test_exec_nonzero_exit(self, kube_client):
        resp = self._stream_response(stderr="no response", returncode=2)
        with patch("lib.kube_client.stream", return_value=resp):
            result = kube_client.exec_in_pod("llm-analytics-hub", "db-0", ["pg_isready"])

        assert not result.ok
        assert result.stderr == "no response"

    def test_exec_writes_stdin(self, kube_client):
        resp = self._stream_response()
        with patch("lib.kube_client.stream", return_value=resp):
            kube_client.exec_in_pod("llm-analytics-hub", "db-0", ["sh", "-c", "cat"], stdin_data="payload")

        resp.write_stdin.assert_called_once_with("payload")

    def test_exec_server_error_is_transient(self, kube_client):
        with patch("lib.kube_client.stream", side_effect=ApiException(status=503, reason="Unavailable")):
            with pytest.raises(TransientRemoteError):
                kube_client.exec_in_pod("llm-analytics-hub", "db-0", ["true"])

    def test_exec_rejects_invalid_pod_name(self, kube_client):
        with pytest.raises(ValidationError):
            kube_client.exec_in_pod("llm-analytics-hub", "Bad_Pod", ["true"])

    def test_exec_in_workload_without_pod(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].list_namespaced_pod.return_value = _items()

        with pytest.raises(WorkloadNotFound):
            kube_client.exec_in_workload("llm-analytics-hub", "app=redis", ["redis-cli", "ping"])


@pytest.mark.unit
class TestKubeClientMutations:
    def test_scale_deployment(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["apps_api"].patch_namespaced_deployment_scale.return_value.to_dict.return_value = {}

        kube_client.scale_deployment("api", "llm-analytics-hub", 0)

        mock_k8s_apis["apps_api"].patch_namespaced_deployment_scale.assert_called_once_with(
            name="api", namespace="llm-analytics-hub", body={"spec": {"replicas": 0}}
        )

    def test_scale_deployment_dry_run(self, dry_run_client, mock_k8s_apis):
        assert dry_run_client.scale_deployment("api", "llm-analytics-hub", 0) == {}
        mock_k8s_apis["apps_api"].patch_namespaced_deployment_scale.assert_not_called()

    def test_scale_all_deployments(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["apps_api"].list_namespaced_deployment.return_value = _items(
            {"metadata": {"name": "api"}}, {"metadata": {"name": "worker"}}
        )

        assert kube_client.scale_all_deployments("llm-analytics-hub", 0) == ["api", "worker"]
        assert mock_k8s_apis["apps_api"].patch_namespaced_deployment_scale.call_count == 2

    def test_delete_jobs_ignores_already_gone(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["batch_api"].list_namespaced_job.return_value = _items(
            {"metadata": {"name": "migrate"}}, {"metadata": {"name": "seed"}}
        )
        mock_k8s_apis["batch_api"].delete_namespaced_job.side_effect = [None, ApiException(status=404)]

        assert kube_client.delete_jobs("llm-analytics-hub") == 1

    def test_delete_cronjobs_dry_run_counts_only(self, dry_run_client, mock_k8s_apis):
        mock_k8s_apis["batch_api"].list_namespaced_cron_job.return_value = _items({"metadata": {"name": "nightly"}})

        assert dry_run_client.delete_cronjobs("llm-analytics-hub") == 1
        mock_k8s_apis["batch_api"].delete_namespaced_cron_job.assert_not_called()

    def test_delete_namespace(self, kube_client, mock_k8s_apis):
        assert kube_client.delete_namespace("monitoring") is True
        mock_k8s_apis["core_api"].delete_namespace.assert_called_once_with(
            name="monitoring", propagation_policy="Foreground"
        )

    def test_delete_absent_namespace(self, kube_client, mock_k8s_apis):
        mock_k8s_apis["core_api"].delete_namespace.side_effect = ApiException(status=404)

        assert kube_client.delete_namespace("monitoring") is False
