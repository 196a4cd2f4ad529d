"""Unit tests for the category validators in modules/validation/."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_node, make_pod
from lib.constants import APP_LABEL_SELECTOR, REDIS_LABEL_SELECTOR, TIMESCALEDB_LABEL_SELECTOR
from lib.exceptions import WorkloadNotFound
from lib.kube_client import ExecResult
from modules.validation import (
    BaseValidator,
    Category,
    Check,
    CheckSeverity,
    CheckStatus,
    ClusterValidator,
    DatabaseValidator,
    NetworkValidator,
    PrerequisitesValidator,
    ResourceValidator,
    SecurityValidator,
    ServiceValidator,
    ValidationReporter,
)
from modules.validation.models import passed

NAMESPACE = "llm-analytics-hub"


@pytest.fixture
def reporter():
    return MagicMock(wraps=ValidationReporter())


def _run(validator_cls, kube, reporter, **kwargs):
    result = validator_cls(kube, NAMESPACE, reporter, check_timeout=5, **kwargs).run()
    return {c.name: c for c in result.checks}, result


def _completed(returncode=0, stdout="Client Version: v1.29.4\n"):
    completed = MagicMock()
    completed.returncode = returncode
    completed.stdout = stdout
    return completed


@pytest.mark.unit
class TestBaseValidator:
    class _Validator(BaseValidator):
        category = Category.CLUSTER

        def __init__(self, *args, declared=(), **kwargs):
            super().__init__(*args, **kwargs)
            self.declared = list(declared)

        def checks(self):
            return self.declared

    def test_records_keep_declaration_order(self, reporter):
        release = threading.Event()

        def slow():
            release.wait(2)
            return passed("slow")

        def fast():
            release.set()
            return passed("fast")

        validator = self._Validator(
            MagicMock(),
            NAMESPACE,
            reporter,
            declared=[Check("slow", CheckSeverity.IMPORTANT, slow), Check("fast", CheckSeverity.IMPORTANT, fast)],
        )

        result = validator.run()

        assert [c.name for c in result.checks] == ["slow", "fast"]
        assert [call.args[0].name for call in reporter.record.call_args_list] == ["slow", "fast"]

    def test_exception_becomes_failure(self, reporter):
        def broken():
            raise RuntimeError("api exploded")

        validator = self._Validator(
            MagicMock(), NAMESPACE, reporter, declared=[Check("broken", CheckSeverity.CRITICAL, broken)]
        )

        record = validator.run().checks[0]

        assert record.status is CheckStatus.FAIL
        assert "api exploded" in record.message
        assert record.details == {"error": "RuntimeError"}
        assert record.is_critical_failure

    def test_timeout_becomes_failure(self, reporter):
        release = threading.Event()

        def hangs():
            release.wait(5)
            return passed("late")

        validator = self._Validator(
            MagicMock(),
            NAMESPACE,
            reporter,
            check_timeout=0.05,
            declared=[Check("hangs", CheckSeverity.IMPORTANT, hangs)],
        )

        try:
            record = validator.run().checks[0]
        finally:
            release.set()

        assert record.status is CheckStatus.FAIL
        assert "timed out" in record.message
        assert record.details == {"error": "timeout"}

    def test_no_checks(self, reporter):
        result = self._Validator(MagicMock(), NAMESPACE, reporter).run()

        assert result.total == 0
        assert result.healthy


@pytest.mark.unit
class TestPrerequisitesValidator:
    @patch("modules.validation.prerequisites.subprocess.run")
    @patch("modules.validation.prerequisites.shutil.which")
    def test_all_present(self, mock_which, mock_run, healthy_kube, reporter):
        mock_which.return_value = "/usr/local/bin/tool"
        mock_run.return_value = _completed()

        checks, result = _run(PrerequisitesValidator, healthy_kube, reporter)

        assert list(checks) == ["kubectl-installed", "helm-installed", "cluster-access"]
        assert result.passed == 3
        assert "v1.29.4" in checks["cluster-access"].message

    @patch("modules.validation.prerequisites.subprocess.run")
    @patch("modules.validation.prerequisites.shutil.which")
    def test_kubectl_missing_is_critical(self, mock_which, mock_run, healthy_kube, reporter):
        mock_which.side_effect = lambda tool: None if tool == "kubectl" else "/usr/bin/helm"
        mock_run.return_value = _completed(stdout="v3.14.0\n")

        checks, result = _run(PrerequisitesValidator, healthy_kube, reporter)

        assert checks["kubectl-installed"].is_critical_failure
        assert result.has_critical_failure

    @patch("modules.validation.prerequisites.subprocess.run")
    @patch("modules.validation.prerequisites.shutil.which")
    def test_helm_missing_warns(self, mock_which, mock_run, healthy_kube, reporter):
        mock_which.side_effect = lambda tool: None if tool == "helm" else "/usr/bin/kubectl"
        mock_run.return_value = _completed()

        checks, _ = _run(PrerequisitesValidator, healthy_kube, reporter)

        assert checks["helm-installed"].status is CheckStatus.WARN

    @patch("modules.validation.prerequisites.subprocess.run")
    @patch("modules.validation.prerequisites.shutil.which")
    def test_kubectl_version_fails(self, mock_which, mock_run, healthy_kube, reporter):
        mock_which.return_value = "/usr/bin/kubectl"
        mock_run.return_value = _completed(returncode=1, stdout="")

        checks, _ = _run(PrerequisitesValidator, healthy_kube, reporter)

        assert checks["kubectl-installed"].status is CheckStatus.FAIL

    @patch("modules.validation.prerequisites.subprocess.run")
    @patch("modules.validation.prerequisites.shutil.which")
    def test_cluster_unreachable(self, mock_which, mock_run, healthy_kube, reporter):
        mock_which.return_value = "/usr/bin/kubectl"
        mock_run.return_value = _completed()
        healthy_kube.is_accessible.return_value = False

        checks, _ = _run(PrerequisitesValidator, healthy_kube, reporter)

        assert checks["cluster-access"].is_critical_failure
        assert "test-context" in checks["cluster-access"].message


@pytest.mark.unit
class TestClusterValidator:
    def test_healthy(self, healthy_kube, reporter):
        checks, result = _run(ClusterValidator, healthy_kube, reporter)

        assert list(checks) == ["nodes-ready", "node-pressure", "system-pods", "namespace-exists"]
        assert result.passed == 4

    def test_some_nodes_not_ready_warns(self, healthy_kube, cluster, reporter):
        cluster.nodes = [make_node("node-1"), make_node("node-2", ready=False)]

        checks, _ = _run(ClusterValidator, healthy_kube, reporter)

        assert checks["nodes-ready"].status is CheckStatus.WARN
        assert "node-2" in checks["nodes-ready"].message

    def test_no_nodes_ready_is_critical(self, healthy_kube, cluster, reporter):
        cluster.nodes = [make_node("node-1", ready=False)]

        checks, _ = _run(ClusterValidator, healthy_kube, reporter)

        assert checks["nodes-ready"].is_critical_failure

    def test_node_pressure_warns(self, healthy_kube, cluster, reporter):
        cluster.nodes = [make_node("node-1", pressure=("DiskPressure",))]

        checks, _ = _run(ClusterValidator, healthy_kube, reporter)

        assert checks["node-pressure"].status is CheckStatus.WARN
        assert "node-1:DiskPressure" in checks["node-pressure"].message

    @pytest.mark.parametrize(
        "running,expected",
        [(10, CheckStatus.PASS), (9, CheckStatus.WARN), (8, CheckStatus.FAIL)],
    )
    def test_system_pod_ratio(self, healthy_kube, cluster, reporter, running, expected):
        cluster.system_pods = [make_pod(f"sys-{i}") for i in range(running)]
        cluster.system_pods += [make_pod(f"bad-{i}", phase="Pending") for i in range(10 - running)]

        checks, _ = _run(ClusterValidator, healthy_kube, reporter)

        assert checks["system-pods"].status is expected

    def test_missing_namespace_is_critical(self, healthy_kube, reporter):
        healthy_kube.namespace_exists.return_value = False

        checks, _ = _run(ClusterValidator, healthy_kube, reporter)

        assert checks["namespace-exists"].is_critical_failure


@pytest.mark.unit
class TestServiceValidator:
    def test_healthy(self, healthy_kube, reporter):
        checks, result = _run(ServiceValidator, healthy_kube, reporter)

        assert result.passed == 6
        assert checks["redis-cluster"].details == {"running": 3}

    def test_partial_app_pods_warn(self, healthy_kube, cluster, reporter):
        cluster.pods[APP_LABEL_SELECTOR] = [make_pod("api-1"), make_pod("api-2", phase="Pending", ready=False)]

        checks, _ = _run(ServiceValidator, healthy_kube, reporter)

        assert checks["app-pods-running"].status is CheckStatus.WARN
        assert checks["pods-ready"].status is CheckStatus.FAIL
        assert "api-2" in checks["pods-ready"].message

    def test_no_app_pods_running_is_critical(self, healthy_kube, cluster, reporter):
        cluster.pods[APP_LABEL_SELECTOR] = [make_pod("api-1", phase="CrashLoopBackOff")]

        checks, _ = _run(ServiceValidator, healthy_kube, reporter)

        assert checks["app-pods-running"].is_critical_failure

    def test_timescaledb_missing_is_critical(self, healthy_kube, cluster, reporter):
        cluster.pods[TIMESCALEDB_LABEL_SELECTOR] = []

        checks, _ = _run(ServiceValidator, healthy_kube, reporter)

        assert checks["timescaledb-running"].is_critical_failure

    def test_degraded_redis_warns(self, healthy_kube, cluster, reporter):
        cluster.pods[REDIS_LABEL_SELECTOR] = [make_pod("redis-0")]

        checks, _ = _run(ServiceValidator, healthy_kube, reporter)

        assert checks["redis-cluster"].status is CheckStatus.WARN
        assert "degraded" in checks["redis-cluster"].message

    def test_no_services_fails(self, healthy_kube, cluster, reporter):
        cluster.resources["services"] = []

        checks, _ = _run(ServiceValidator, healthy_kube, reporter)

        assert checks["services-configured"].status is CheckStatus.FAIL
        assert not checks["services-configured"].is_critical_failure


@pytest.mark.unit
class TestSecurityValidator:
    def test_healthy(self, healthy_kube, reporter):
        _, result = _run(SecurityValidator, healthy_kube, reporter)

        assert result.passed == 6

    def test_root_pods_warn(self, healthy_kube, cluster, reporter):
        cluster.pods[APP_LABEL_SELECTOR] = [make_pod("api-1", non_root=False)]

        checks, _ = _run(SecurityValidator, healthy_kube, reporter)

        assert checks["no-root-pods"].status is CheckStatus.WARN
        assert checks["no-root-pods"].details == {"pods": ["api-1"]}

    def test_privileged_container_is_critical(self, healthy_kube, cluster, reporter):
        cluster.pods[APP_LABEL_SELECTOR] = [make_pod("api-1", privileged=True)]

        checks, _ = _run(SecurityValidator, healthy_kube, reporter)

        assert checks["no-privileged-containers"].is_critical_failure
        assert "api-1/main" in checks["no-privileged-containers"].message

    def test_missing_pdbs_only_warns(self, healthy_kube, cluster, reporter):
        cluster.resources["poddisruptionbudgets"] = []

        checks, result = _run(SecurityValidator, healthy_kube, reporter)

        assert checks["pod-disruption-budgets"].status is CheckStatus.WARN
        assert checks["pod-disruption-budgets"].severity is CheckSeverity.ADVISORY
        assert result.healthy

    def test_service_account_tokens_are_not_app_secrets(self, healthy_kube, cluster, reporter):
        cluster.resources["secrets"] = [{"metadata": {"name": "sa"}, "type": "kubernetes.io/service-account-token"}]

        checks, _ = _run(SecurityValidator, healthy_kube, reporter)

        assert checks["secrets-configured"].status is CheckStatus.WARN

    def test_missing_limits_warn(self, healthy_kube, cluster, reporter):
        cluster.pods[APP_LABEL_SELECTOR] = [make_pod("api-1", limits=False)]

        checks, _ = _run(SecurityValidator, healthy_kube, reporter)

        assert checks["resource-limits"].status is CheckStatus.WARN


@pytest.mark.unit
class TestResourceValidator:
    def test_healthy(self, healthy_kube, reporter):
        checks, result = _run(ResourceValidator, healthy_kube, reporter)

        assert list(checks) == ["node-resources", "pod-resource-requests", "hpa-configured"]
        assert result.passed == 3

    def test_metrics_server_missing_warns(self, healthy_kube, cluster, reporter):
        cluster.metrics_pods = []

        checks, _ = _run(ResourceValidator, healthy_kube, reporter)

        assert checks["node-resources"].status is CheckStatus.WARN

    def test_missing_hpa_is_advisory(self, healthy_kube, cluster, reporter):
        cluster.resources["horizontalpodautoscalers"] = []

        checks, result = _run(ResourceValidator, healthy_kube, reporter)

        assert checks["hpa-configured"].status is CheckStatus.WARN
        assert result.healthy


def _exec_result(pod, stdout="", stderr="", exit_code=0):
    return ExecResult(pod=pod, stdout=stdout, stderr=stderr, exit_code=exit_code)


@pytest.mark.unit
class TestDatabaseValidator:
    def test_healthy(self, healthy_kube, reporter):
        def exec_in_workload(namespace, selector, command, timeout=None):
            program = command[0]
            if program == "pg_isready":
                return _exec_result("timescaledb-0", "/var/run/postgresql:5432 - accepting connections\n")
            if program == "psql" and "-lqt" in command:
                return _exec_result("timescaledb-0", " llm_analytics | postgres | UTF8\n template1 | postgres | UTF8\n")
            if program == "psql":
                return _exec_result("timescaledb-0", "2.14.2\n")
            if program == "redis-cli":
                return _exec_result("redis-0", "PONG\n")
            return _exec_result("kafka-0", "events\nmetrics\n")

        healthy_kube.exec_in_workload.side_effect = exec_in_workload

        checks, result = _run(DatabaseValidator, healthy_kube, reporter)

        assert result.passed == 5
        assert "2 topics" in checks["kafka-connectivity"].message
        assert "2.14.2" in checks["timescaledb-extension"].message

    def test_missing_database(self, healthy_kube, reporter):
        healthy_kube.exec_in_workload.return_value = _exec_result("timescaledb-0", " postgres | postgres | UTF8\n")

        checks, _ = _run(DatabaseValidator, healthy_kube, reporter, database="llm_analytics")

        assert checks["database-exists"].status is CheckStatus.FAIL

    def test_postgres_down_is_critical(self, healthy_kube, reporter):
        healthy_kube.exec_in_workload.return_value = _exec_result("timescaledb-0", "no response\n", exit_code=2)

        checks, _ = _run(DatabaseValidator, healthy_kube, reporter)

        assert checks["postgres-connectivity"].is_critical_failure
        assert checks["redis-connectivity"].status is CheckStatus.FAIL

    def test_no_running_pods_skips(self, healthy_kube, reporter):
        healthy_kube.exec_in_workload.side_effect = WorkloadNotFound("no running pod")

        checks, result = _run(DatabaseValidator, healthy_kube, reporter)

        assert result.skipped == 5
        healthy_kube.exec_in_pod.assert_not_called()


@pytest.mark.unit
class TestNetworkValidator:
    def test_healthy(self, healthy_kube, reporter):
        healthy_kube.find_running_pod.return_value = "api-1"
        healthy_kube.exec_in_pod.return_value = _exec_result(
            "api-1", "10.96.0.1       kubernetes.default.svc.cluster.local\n"
        )

        checks, result = _run(NetworkValidator, healthy_kube, reporter)

        assert result.passed == 3
        assert "10.96.0.1" in checks["dns-resolution"].message

    def test_dns_failure_is_critical(self, healthy_kube, reporter):
        healthy_kube.find_running_pod.return_value = "api-1"
        healthy_kube.exec_in_pod.return_value = _exec_result("api-1", exit_code=2)

        checks, _ = _run(NetworkValidator, healthy_kube, reporter)

        assert checks["dns-resolution"].is_critical_failure
        assert checks["service-connectivity"].status is CheckStatus.FAIL

    def test_dns_check_falls_back_to_database_pod(self, healthy_kube, reporter):
        healthy_kube.find_running_pod.side_effect = lambda ns, selector: (
            "timescaledb-0" if selector == TIMESCALEDB_LABEL_SELECTOR else None
        )
        healthy_kube.exec_in_pod.return_value = _exec_result("timescaledb-0", "10.96.0.1 kubernetes\n")

        checks, _ = _run(NetworkValidator, healthy_kube, reporter)

        assert checks["dns-resolution"].status is CheckStatus.PASS
        assert checks["service-connectivity"].status is CheckStatus.SKIP

    def test_missing_ingress_is_advisory(self, healthy_kube, cluster, reporter):
        healthy_kube.find_running_pod.return_value = None
        cluster.resources["ingresses"] = []

        checks, result = _run(NetworkValidator, healthy_kube, reporter)

        assert checks["ingress-configured"].status is CheckStatus.WARN
        assert result.healthy
