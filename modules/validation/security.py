"""Pod security context, policy and secret checks for the application namespace."""

from typing import Any, Dict, Iterator, List, Tuple

from lib.constants import SERVICE_ACCOUNT_TOKEN_TYPE

from .base_validator import BaseValidator, Check
from .models import Category, CheckOutcome, CheckSeverity, failed, passed, warned


def _pod_name(pod: Dict[str, Any]) -> str:
    return (pod.get("metadata") or {}).get("name", "unknown")


def iter_containers(pod: Dict[str, Any]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """(pod/container, container) for every regular container of a pod dict."""
    for container in (pod.get("spec") or {}).get("containers") or []:
        yield f"{_pod_name(pod)}/{container.get('name', '?')}", container


def runs_as_root(pod: Dict[str, Any]) -> bool:
    """True if any container may run as UID 0."""
    pod_ctx = (pod.get("spec") or {}).get("security_context") or {}
    for _, container in iter_containers(pod):
        ctx = container.get("security_context") or {}
        run_as_user = ctx.get("run_as_user", pod_ctx.get("run_as_user"))
        non_root = ctx.get("run_as_non_root", pod_ctx.get("run_as_non_root"))
        if run_as_user == 0:
            return True
        if not non_root and run_as_user is None:
            return True
    return False


def _summarize(names: List[str], limit: int = 5) -> str:
    shown = ", ".join(names[:limit])
    return shown + (f" and {len(names) - limit} more" if len(names) > limit else "")


class SecurityValidator(BaseValidator):
    category = Category.SECURITY
    title = "Security"

    def checks(self) -> List[Check]:
        return [
            Check("no-root-pods", CheckSeverity.IMPORTANT, self.check_root_pods),
            Check("no-privileged-containers", CheckSeverity.CRITICAL, self.check_privileged),
            Check("network-policies", CheckSeverity.IMPORTANT, self.check_network_policies),
            Check("pod-disruption-budgets", CheckSeverity.ADVISORY, self.check_pdbs),
            Check("secrets-configured", CheckSeverity.IMPORTANT, self.check_secrets),
            Check("resource-limits", CheckSeverity.IMPORTANT, self.check_resource_limits),
        ]

    def check_root_pods(self) -> CheckOutcome:
        pods = self.kube.get_pods(self.namespace)
        root = sorted(_pod_name(p) for p in pods if runs_as_root(p))
        if root:
            return warned(f"{len(root)} pods may run as root: {_summarize(root)}", pods=root)
        return passed(f"no pods run as root ({len(pods)} checked)")

    def check_privileged(self) -> CheckOutcome:
        privileged = [
            name
            for pod in self.kube.get_pods(self.namespace)
            for name, container in iter_containers(pod)
            if (container.get("security_context") or {}).get("privileged")
        ]
        if privileged:
            return failed(f"privileged containers found: {_summarize(sorted(privileged))}", containers=privileged)
        return passed("no privileged containers")

    def check_network_policies(self) -> CheckOutcome:
        policies = self.kube.list_resources("networkpolicies", self.namespace)
        if not policies:
            return warned(f"no NetworkPolicies in {self.namespace} (all traffic allowed)")
        return passed(f"{len(policies)} NetworkPolicies configured")

    def check_pdbs(self) -> CheckOutcome:
        pdbs = self.kube.list_resources("poddisruptionbudgets", self.namespace)
        if not pdbs:
            return failed(f"no PodDisruptionBudgets in {self.namespace}")
        return passed(f"{len(pdbs)} PodDisruptionBudgets configured")

    def check_secrets(self) -> CheckOutcome:
        secrets = [
            s for s in self.kube.list_resources("secrets", self.namespace) if s.get("type") != SERVICE_ACCOUNT_TOKEN_TYPE
        ]
        if not secrets:
            return warned(f"no application secrets in {self.namespace}")
        return passed(f"{len(secrets)} secrets configured")

    def check_resource_limits(self) -> CheckOutcome:
        missing = [
            name
            for pod in self.kube.get_pods(self.namespace)
            for name, container in iter_containers(pod)
            if not ((container.get("resources") or {}).get("limits"))
        ]
        if missing:
            return warned(f"{len(missing)} containers without resource limits: {_summarize(sorted(missing))}")
        return passed("all containers have resource limits")
