"""Application, database, cache and broker workload checks."""

from typing import Any, Dict, List

from lib.constants import (
    APP_LABEL_SELECTOR,
    KAFKA_LABEL_SELECTOR,
    MIN_CLUSTER_REPLICAS,
    REDIS_LABEL_SELECTOR,
    TIMESCALEDB_LABEL_SELECTOR,
)
from lib.kube_client import has_true_condition, is_pod_running

from .base_validator import BaseValidator, Check
from .models import Category, CheckOutcome, CheckSeverity, failed, passed, skipped, warned


def _running(pods: List[Dict[str, Any]]) -> int:
    return sum(1 for p in pods if is_pod_running(p))


class ServiceValidator(BaseValidator):
    """Workloads in the application namespace."""

    category = Category.SERVICES
    title = "Services"

    def checks(self) -> List[Check]:
        return [
            Check("app-pods-running", CheckSeverity.CRITICAL, self.check_app_pods),
            Check("pods-ready", CheckSeverity.IMPORTANT, self.check_pods_ready),
            Check("timescaledb-running", CheckSeverity.CRITICAL, self.check_timescaledb),
            Check("redis-cluster", CheckSeverity.IMPORTANT, self.check_redis),
            Check("kafka-cluster", CheckSeverity.IMPORTANT, self.check_kafka),
            Check("services-configured", CheckSeverity.IMPORTANT, self.check_services),
        ]

    def check_app_pods(self) -> CheckOutcome:
        pods = self.kube.get_pods(self.namespace, APP_LABEL_SELECTOR)
        if not pods:
            return warned(f"no pods match {APP_LABEL_SELECTOR}")
        running = _running(pods)
        if running == len(pods):
            return passed(f"{running}/{len(pods)} application pods running")
        if running > 0:
            return warned(f"{running}/{len(pods)} application pods running")
        return failed(f"0/{len(pods)} application pods running")

    def check_pods_ready(self) -> CheckOutcome:
        pods = self.kube.get_pods(self.namespace)
        if not pods:
            return skipped(f"no pods in {self.namespace}")
        not_ready = sorted(
            (p.get("metadata") or {}).get("name", "unknown")
            for p in pods
            if (p.get("status") or {}).get("phase") != "Succeeded" and not has_true_condition(p, "Ready")
        )
        if not not_ready:
            return passed(f"all {len(pods)} pods ready")
        return failed(f"{len(not_ready)}/{len(pods)} pods not ready: {', '.join(not_ready)}")

    def check_timescaledb(self) -> CheckOutcome:
        pods = self.kube.get_pods(self.namespace, TIMESCALEDB_LABEL_SELECTOR)
        running = _running(pods)
        if running:
            return passed(f"{running}/{len(pods)} TimescaleDB pods running")
        if pods:
            return failed(f"0/{len(pods)} TimescaleDB pods running")
        return failed(f"no pods match {TIMESCALEDB_LABEL_SELECTOR}")

    def _check_replicated(self, label: str, selector: str) -> CheckOutcome:
        pods = self.kube.get_pods(self.namespace, selector)
        running = _running(pods)
        message = f"{running}/{MIN_CLUSTER_REPLICAS} {label} pods running"
        if running >= MIN_CLUSTER_REPLICAS:
            return passed(message, running=running)
        if running > 0:
            return warned(message + " (cluster degraded)", running=running)
        return failed(message, running=running)

    def check_redis(self) -> CheckOutcome:
        return self._check_replicated("Redis", REDIS_LABEL_SELECTOR)

    def check_kafka(self) -> CheckOutcome:
        return self._check_replicated("Kafka", KAFKA_LABEL_SELECTOR)

    def check_services(self) -> CheckOutcome:
        services = self.kube.list_resources("services", self.namespace)
        if not services:
            return failed(f"no services in {self.namespace}")
        return passed(f"{len(services)} services configured")
