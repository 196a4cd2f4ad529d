"""Capacity-related checks: metrics pipeline, requests and autoscaling."""

from typing import List

from lib.constants import METRICS_SERVER_LABEL_SELECTOR, SYSTEM_NAMESPACE
from lib.kube_client import is_pod_running

from .base_validator import BaseValidator, Check
from .models import Category, CheckOutcome, CheckSeverity, failed, passed, warned
from .security import iter_containers


class ResourceValidator(BaseValidator):
    category = Category.RESOURCES
    title = "Resources"

    def checks(self) -> List[Check]:
        return [
            Check("node-resources", CheckSeverity.IMPORTANT, self.check_metrics_server),
            Check("pod-resource-requests", CheckSeverity.IMPORTANT, self.check_requests),
            Check("hpa-configured", CheckSeverity.ADVISORY, self.check_hpa),
        ]

    def check_metrics_server(self) -> CheckOutcome:
        pods = self.kube.get_pods(SYSTEM_NAMESPACE, METRICS_SERVER_LABEL_SELECTOR)
        if any(is_pod_running(p) for p in pods):
            return passed("metrics-server running, node resource usage available")
        return warned("metrics-server not running, node resource usage unavailable")

    def check_requests(self) -> CheckOutcome:
        missing = sorted(
            name
            for pod in self.kube.get_pods(self.namespace)
            for name, container in iter_containers(pod)
            if not ((container.get("resources") or {}).get("requests"))
        )
        if missing:
            return warned(f"{len(missing)} containers without resource requests: {', '.join(missing[:5])}")
        return passed("all containers declare resource requests")

    def check_hpa(self) -> CheckOutcome:
        hpas = self.kube.list_resources("horizontalpodautoscalers", self.namespace)
        if not hpas:
            return failed(f"no HorizontalPodAutoscalers in {self.namespace}")
        return passed(f"{len(hpas)} HorizontalPodAutoscalers configured")
