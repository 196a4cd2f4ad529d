"""
Kubernetes client wrapper for lifecycle operations.

All names, namespaces and selectors are validated before they reach the API
server. Read calls are retried on transient failures; exec calls are not,
because the commands they run (dumps, restores) are not idempotent.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.exceptions import HTTPError

from lib.constants import EXEC_TIMEOUT, KUBE_REQUEST_TIMEOUT, LOGGER_NAME
from lib.exceptions import TransientRemoteError, WorkloadNotFound
from lib.validation import InputValidator, ValidationError
from lib.waiter import wait_for_condition as poll_until

logger = logging.getLogger(LOGGER_NAME)

EXEC_STDIN_CHUNK = 64 * 1024


def is_retryable_error(exception: BaseException) -> bool:
    """Check if exception is retryable."""
    if isinstance(exception, ApiException):
        # Retry on server errors (5xx) and too many requests (429)
        return 500 <= exception.status < 600 or exception.status == 429
    if isinstance(exception, HTTPError):
        return True
    return False


def _should_retry(exception: BaseException) -> bool:
    if not isinstance(exception, Exception):
        return False
    return is_retryable_error(exception)


# Standard retry decorator for API calls
retry_api_call = retry(
    retry=retry_if_exception(_should_retry),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(5),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command executed inside a pod."""

    pod: str
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def is_pod_running(pod: Dict[str, Any]) -> bool:
    return (pod.get("status") or {}).get("phase") == "Running"


def has_true_condition(resource: Dict[str, Any], condition_type: str) -> bool:
    conditions = (resource.get("status") or {}).get("conditions") or []
    return any(c.get("type") == condition_type and c.get("status") == "True" for c in conditions)


class KubeClient:
    """Wrapper for Kubernetes API client with lifecycle-specific helpers."""

    def __init__(
        self,
        context: Optional[str] = None,
        dry_run: bool = False,
        request_timeout: int = KUBE_REQUEST_TIMEOUT,
        disable_hostname_verification: bool = False,
    ) -> None:
        """
        Initialize Kubernetes client for specific context.

        Args:
            context: Kubernetes context name
            dry_run: If True, don't make actual changes
            request_timeout: API request timeout in seconds
            disable_hostname_verification: If True, skip TLS hostname verification (not recommended)
        """
        self.context = context
        self.dry_run = dry_run
        self.request_timeout = request_timeout

        config.load_kube_config(context=context)

        # Per-instance configuration so clients for different contexts never share state
        configuration = client.Configuration.get_default_copy()
        configuration.retries = 3

        if disable_hostname_verification and hasattr(configuration, "assert_hostname"):
            configuration.assert_hostname = False
            logger.warning(
                "Hostname verification disabled for context: %s",
                context or "default",
            )

        api_client = client.ApiClient(configuration)
        api_client.configuration.timeout = request_timeout
        self.core_v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.batch_v1 = client.BatchV1Api(api_client)
        self.networking_v1 = client.NetworkingV1Api(api_client)
        self.policy_v1 = client.PolicyV1Api(api_client)
        self.autoscaling_v2 = client.AutoscalingV2Api(api_client)
        self.version_api = client.VersionApi(api_client)

        logger.info(
            "Initialized Kubernetes client for context: %s (timeout: %ss)",
            context or "default",
            request_timeout,
        )

    # =============================
    # Generic listing
    # =============================
    def _list_fn(self, kind: str) -> Callable[..., Any]:
        """Map a resource kind to its namespaced (or cluster-wide) list call."""
        table: Dict[str, Callable[..., Any]] = {
            "pods": self.core_v1.list_namespaced_pod,
            "services": self.core_v1.list_namespaced_service,
            "secrets": self.core_v1.list_namespaced_secret,
            "deployments": self.apps_v1.list_namespaced_deployment,
            "statefulsets": self.apps_v1.list_namespaced_stateful_set,
            "jobs": self.batch_v1.list_namespaced_job,
            "cronjobs": self.batch_v1.list_namespaced_cron_job,
            "networkpolicies": self.networking_v1.list_namespaced_network_policy,
            "ingresses": self.networking_v1.list_namespaced_ingress,
            "poddisruptionbudgets": self.policy_v1.list_namespaced_pod_disruption_budget,
            "horizontalpodautoscalers": self.autoscaling_v2.list_namespaced_horizontal_pod_autoscaler,
        }
        if kind not in table:
            raise ValidationError(f"Unsupported resource kind '{kind}'")
        return table[kind]

    @retry_api_call
    def list_resources(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[Dict]:
        """
        List resources of a kind.

        Args:
            kind: Plural resource kind ('pods', 'deployments', 'nodes', ...)
            namespace: Namespace (required for namespaced kinds)
            label_selector: Optional label selector

        Returns:
            List of resource dicts (empty when the namespace does not exist)
        """
        if label_selector is not None:
            InputValidator.validate_label_selector(label_selector)

        try:
            if kind == "nodes":
                result = self.core_v1.list_node(label_selector=label_selector)
            elif kind == "namespaces":
                result = self.core_v1.list_namespace(label_selector=label_selector)
            else:
                if not namespace:
                    raise ValidationError(f"Namespace is required to list {kind}")
                InputValidator.validate_kubernetes_namespace(namespace)
                result = self._list_fn(kind)(namespace=namespace, label_selector=label_selector)
            return [item.to_dict() for item in result.items]
        except ApiException as e:
            if e.status == 404:
                return []
            if is_retryable_error(e):
                raise
            logger.error("Failed to list %s in %s: %s", kind, namespace or "cluster", e)
            raise

    def get_pods(self, namespace: str, label_selector: Optional[str] = None) -> List[Dict]:
        """List pods in a namespace."""
        return self.list_resources("pods", namespace, label_selector)

    def list_nodes(self) -> List[Dict]:
        return self.list_resources("nodes")

    def find_running_pod(self, namespace: str, label_selector: str) -> Optional[str]:
        """Name of the first running pod matching the selector, or None."""
        for pod in self.get_pods(namespace, label_selector):
            if is_pod_running(pod):
                return (pod.get("metadata") or {}).get("name")
        return None

    # =============================
    # Status helpers
    # =============================
    @retry_api_call
    def get_namespace(self, name: str) -> Optional[Dict]:
        """Namespace dict or None if not found.

        Raises:
            ValidationError: If namespace name is invalid
        """
        try:
            InputValidator.validate_kubernetes_namespace(name)
            ns = self.core_v1.read_namespace(name)
            return ns.to_dict()
        except ApiException as e:
            if e.status == 404:
                return None
            if is_retryable_error(e):
                raise
            logger.error("Failed to get namespace %s: %s", name, e)
            raise

    def namespace_exists(self, name: str) -> bool:
        return self.get_namespace(name) is not None

    @retry_api_call
    def get_resource_status(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict]:
        """
        Read the ``status`` block of a single resource.

        Returns:
            Status dict, or None if the resource does not exist
        """
        InputValidator.validate_kubernetes_name(name, kind)
        if namespace:
            InputValidator.validate_kubernetes_namespace(namespace)

        readers: Dict[str, Callable[..., Any]] = {
            "pods": self.core_v1.read_namespaced_pod_status,
            "deployments": self.apps_v1.read_namespaced_deployment_status,
            "statefulsets": self.apps_v1.read_namespaced_stateful_set_status,
            "jobs": self.batch_v1.read_namespaced_job_status,
        }
        try:
            if kind == "namespaces":
                resource = self.core_v1.read_namespace_status(name)
            elif kind == "nodes":
                resource = self.core_v1.read_node_status(name)
            elif kind in readers:
                if not namespace:
                    raise ValidationError(f"Namespace is required to read {kind}")
                resource = readers[kind](name=name, namespace=namespace)
            else:
                raise ValidationError(f"Unsupported resource kind '{kind}'")
            return resource.to_dict().get("status") or {}
        except ApiException as e:
            if e.status == 404:
                return None
            if is_retryable_error(e):
                raise
            raise

    def wait_for_condition(
        self,
        kind: str,
        name: str,
        condition: str,
        timeout: float,
        namespace: Optional[str] = None,
        interval: float = 5,
    ) -> bool:
        """
        Wait until a resource reaches ``condition``.

        ``condition`` is either ``"Deleted"``, a pod phase (``"Running"``,
        ``"Succeeded"``) or a status condition type that must be ``True``.
        Returns False on timeout instead of raising.
        """

        def _check():
            status = self.get_resource_status(kind, name, namespace)
            if condition == "Deleted":
                return status is None, "absent" if status is None else "still present"
            if status is None:
                return False, "not found"
            if status.get("phase") == condition:
                return True, f"phase={condition}"
            if has_true_condition({"status": status}, condition):
                return True, f"{condition}=True"
            return False, f"phase={status.get('phase', 'unknown')}"

        return poll_until(
            f"{kind}/{name} {condition}",
            _check,
            timeout=timeout,
            interval=interval,
            logger=logger,
        )

    def is_accessible(self) -> bool:
        """True if the API server answers a version request."""
        try:
            self.version_api.get_code()
            return True
        except (ApiException, HTTPError) as e:
            logger.debug("Cluster not accessible: %s", e)
            return False

    def get_server_version(self) -> str:
        info = self.version_api.get_code()
        return getattr(info, "git_version", "unknown")

    # =============================
    # Exec helpers
    # =============================
    def exec_in_pod(
        self,
        namespace: str,
        pod: str,
        command: List[str],
        stdin_data: Optional[str] = None,
        timeout: float = EXEC_TIMEOUT,
        container: Optional[str] = None,
    ) -> ExecResult:
        """
        Run a command inside a pod and collect its output.

        Args:
            namespace: Namespace name
            pod: Pod name
            command: argv to execute (no shell unless the caller asks for one)
            stdin_data: Text written to the command's stdin
            timeout: Hard limit in seconds for the whole exchange

        Raises:
            TransientRemoteError: On timeout or transport failure
        """
        InputValidator.validate_kubernetes_namespace(namespace)
        InputValidator.validate_kubernetes_name(pod, "pod")

        logger.debug("Exec in %s/%s: %s", namespace, pod, command[0] if command else "")
        try:
            resp = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                pod,
                namespace,
                command=command,
                container=container,
                stderr=True,
                stdin=stdin_data is not None,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
        except ApiException as e:
            if is_retryable_error(e):
                raise TransientRemoteError(f"exec in {namespace}/{pod} failed: {e.reason}") from e
            raise

        stdout: List[str] = []
        stderr: List[str] = []
        deadline = time.time() + timeout
        try:
            if stdin_data is not None:
                for offset in range(0, len(stdin_data), EXEC_STDIN_CHUNK):
                    resp.write_stdin(stdin_data[offset : offset + EXEC_STDIN_CHUNK])
                    self._drain(resp, stdout, stderr)
                    if time.time() > deadline:
                        raise TransientRemoteError(f"exec in {namespace}/{pod} timed out after {timeout}s")

            while resp.is_open():
                resp.update(timeout=1)
                self._drain(resp, stdout, stderr)
                if time.time() > deadline:
                    raise TransientRemoteError(f"exec in {namespace}/{pod} timed out after {timeout}s")
            self._drain(resp, stdout, stderr)
            exit_code = resp.returncode
        except TransientRemoteError:
            raise
        except (OSError, HTTPError) as e:
            raise TransientRemoteError(f"exec in {namespace}/{pod} interrupted: {e}") from e
        finally:
            resp.close()

        return ExecResult(
            pod=pod,
            stdout="".join(stdout),
            stderr="".join(stderr),
            exit_code=exit_code if exit_code is not None else -1,
        )

    @staticmethod
    def _drain(resp: Any, stdout: List[str], stderr: List[str]) -> None:
        if resp.peek_stdout():
            stdout.append(resp.read_stdout())
        if resp.peek_stderr():
            stderr.append(resp.read_stderr())

    def exec_in_workload(
        self,
        namespace: str,
        label_selector: str,
        command: List[str],
        stdin_data: Optional[str] = None,
        timeout: float = EXEC_TIMEOUT,
    ) -> ExecResult:
        """
        Run a command in the first running pod matching ``label_selector``.

        Raises:
            WorkloadNotFound: If no running pod matches
        """
        pod = self.find_running_pod(namespace, label_selector)
        if pod is None:
            raise WorkloadNotFound(f"No running pod matches {label_selector} in {namespace}")
        return self.exec_in_pod(namespace, pod, command, stdin_data=stdin_data, timeout=timeout)

    # =============================
    # Mutations
    # =============================
    @retry_api_call
    def scale_deployment(self, name: str, namespace: str, replicas: int) -> Dict:
        """Scale a deployment.

        Raises:
            ValidationError: If deployment name or namespace is invalid
        """
        InputValidator.validate_kubernetes_name(name, "deployment")
        InputValidator.validate_kubernetes_namespace(namespace)

        if self.dry_run:
            logger.info(
                "[DRY-RUN] Would scale deployment %s/%s to %s replicas",
                namespace,
                name,
                replicas,
            )
            return {}

        try:
            body = {"spec": {"replicas": replicas}}
            result = self.apps_v1.patch_namespaced_deployment_scale(name=name, namespace=namespace, body=body)
            return result.to_dict()
        except ApiException as e:
            if is_retryable_error(e):
                raise
            logger.error("Failed to scale deployment %s/%s: %s", namespace, name, e)
            raise

    def scale_all_deployments(self, namespace: str, replicas: int) -> List[str]:
        """Scale every deployment in a namespace. Returns the names that were scaled."""
        scaled = []
        for deployment in self.list_resources("deployments", namespace):
            name = (deployment.get("metadata") or {}).get("name")
            if not name:
                continue
            self.scale_deployment(name, namespace, replicas)
            scaled.append(name)
        return scaled

    @retry_api_call
    def delete_jobs(self, namespace: str) -> int:
        """Delete all Jobs in a namespace (pods cascade in the background)."""
        return self._delete_collection("jobs", namespace, self.batch_v1.delete_namespaced_job)

    @retry_api_call
    def delete_cronjobs(self, namespace: str) -> int:
        """Delete all CronJobs in a namespace."""
        return self._delete_collection("cronjobs", namespace, self.batch_v1.delete_namespaced_cron_job)

    def _delete_collection(self, kind: str, namespace: str, delete_fn: Callable[..., Any]) -> int:
        InputValidator.validate_kubernetes_namespace(namespace)
        items = self.list_resources(kind, namespace)
        if self.dry_run:
            logger.info("[DRY-RUN] Would delete %s %s in %s", len(items), kind, namespace)
            return len(items)

        deleted = 0
        for item in items:
            name = (item.get("metadata") or {}).get("name")
            try:
                delete_fn(name=name, namespace=namespace, propagation_policy="Background")
                deleted += 1
            except ApiException as e:
                if e.status == 404:
                    continue
                if is_retryable_error(e):
                    raise
                logger.error("Failed to delete %s %s/%s: %s", kind, namespace, name, e)
                raise
        return deleted

    @retry_api_call
    def delete_namespace(self, name: str) -> bool:
        """Delete a namespace.

        Returns:
            True if deletion was issued, False if the namespace was already absent
        """
        InputValidator.validate_kubernetes_namespace(name)

        if self.dry_run:
            logger.info("[DRY-RUN] Would delete namespace %s", name)
            return True

        try:
            self.core_v1.delete_namespace(name=name, propagation_policy="Foreground")
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            if is_retryable_error(e):
                raise
            logger.error("Failed to delete namespace %s: %s", name, e)
            raise
