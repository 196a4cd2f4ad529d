"""Node, system pod and namespace checks."""

from typing import Any, Dict, List

from lib.constants import SYSTEM_NAMESPACE, SYSTEM_PODS_WARN_RATIO
from lib.kube_client import has_true_condition, is_pod_running

from .base_validator import BaseValidator, Check
from .models import Category, CheckOutcome, CheckSeverity, failed, passed, warned

PRESSURE_CONDITIONS = ("MemoryPressure", "DiskPressure", "PIDPressure")


def _name(resource: Dict[str, Any]) -> str:
    return (resource.get("metadata") or {}).get("name", "unknown")


class ClusterValidator(BaseValidator):
    """Cluster-level health: nodes, kube-system pods and the target namespace."""

    category = Category.CLUSTER
    title = "Cluster"

    def checks(self) -> List[Check]:
        return [
            Check("nodes-ready", CheckSeverity.CRITICAL, self.check_nodes_ready),
            Check("node-pressure", CheckSeverity.IMPORTANT, self.check_node_pressure),
            Check("system-pods", CheckSeverity.IMPORTANT, self.check_system_pods),
            Check("namespace-exists", CheckSeverity.CRITICAL, self.check_namespace),
        ]

    def check_nodes_ready(self) -> CheckOutcome:
        nodes = self.kube.list_nodes()
        if not nodes:
            return failed("no nodes found")
        ready = [n for n in nodes if has_true_condition(n, "Ready")]
        not_ready = sorted(_name(n) for n in nodes if not has_true_condition(n, "Ready"))
        if len(ready) == len(nodes):
            return passed(f"all {len(nodes)} nodes ready", ready=len(ready), total=len(nodes))
        if ready:
            return warned(
                f"{len(ready)}/{len(nodes)} nodes ready (not ready: {', '.join(not_ready)})",
                ready=len(ready),
                total=len(nodes),
            )
        return failed(f"0/{len(nodes)} nodes ready", ready=0, total=len(nodes))

    def check_node_pressure(self) -> CheckOutcome:
        under_pressure = []
        for node in self.kube.list_nodes():
            for condition in PRESSURE_CONDITIONS:
                if has_true_condition(node, condition):
                    under_pressure.append(f"{_name(node)}:{condition}")
        if under_pressure:
            return warned(f"nodes under pressure: {', '.join(sorted(under_pressure))}")
        return passed("no memory, disk or PID pressure reported")

    def check_system_pods(self) -> CheckOutcome:
        pods = self.kube.get_pods(SYSTEM_NAMESPACE)
        if not pods:
            return failed(f"no pods found in {SYSTEM_NAMESPACE}")
        running = sum(1 for p in pods if is_pod_running(p) or (p.get("status") or {}).get("phase") == "Succeeded")
        message = f"{running}/{len(pods)} {SYSTEM_NAMESPACE} pods running"
        if running == len(pods):
            return passed(message, running=running, total=len(pods))
        if running / len(pods) > SYSTEM_PODS_WARN_RATIO:
            return warned(message, running=running, total=len(pods))
        return failed(message, running=running, total=len(pods))

    def check_namespace(self) -> CheckOutcome:
        if self.kube.namespace_exists(self.namespace):
            return passed(f"namespace {self.namespace} exists")
        return failed(f"namespace {self.namespace} not found")
