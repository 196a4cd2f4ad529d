"""In-cluster DNS, service reachability and ingress checks."""

from typing import List, Optional

from lib.constants import APP_LABEL_SELECTOR, DB_SERVICE_HOST, DB_SERVICE_PORT, TIMESCALEDB_LABEL_SELECTOR

from .base_validator import BaseValidator, Check
from .models import Category, CheckOutcome, CheckSeverity, failed, passed, skipped

DNS_PROBE_NAME = "kubernetes.default.svc.cluster.local"


class NetworkValidator(BaseValidator):
    """Probes run from inside existing workloads; nothing is created in the cluster."""

    category = Category.NETWORK
    title = "Network"

    def checks(self) -> List[Check]:
        return [
            Check("dns-resolution", CheckSeverity.CRITICAL, self.check_dns),
            Check("service-connectivity", CheckSeverity.IMPORTANT, self.check_service_connectivity),
            Check("ingress-configured", CheckSeverity.ADVISORY, self.check_ingress),
        ]

    def _dns_source_pod(self) -> Optional[str]:
        for selector in (APP_LABEL_SELECTOR, TIMESCALEDB_LABEL_SELECTOR):
            pod = self.kube.find_running_pod(self.namespace, selector)
            if pod:
                return pod
        return None

    def check_dns(self) -> CheckOutcome:
        pod = self._dns_source_pod()
        if pod is None:
            return skipped("no running pod available to resolve DNS from")
        result = self.kube.exec_in_pod(
            self.namespace, pod, ["getent", "hosts", DNS_PROBE_NAME], timeout=self.check_timeout
        )
        if result.ok and result.stdout.strip():
            address = result.stdout.split()[0]
            return passed(f"{DNS_PROBE_NAME} resolves to {address} (from {pod})")
        return failed(f"cannot resolve {DNS_PROBE_NAME} from {pod}: {result.stderr.strip() or 'no answer'}")

    def check_service_connectivity(self) -> CheckOutcome:
        pod = self.kube.find_running_pod(self.namespace, APP_LABEL_SELECTOR)
        if pod is None:
            return skipped("no running application pod")
        target = f"{DB_SERVICE_HOST}:{DB_SERVICE_PORT}"
        result = self.kube.exec_in_pod(
            self.namespace,
            pod,
            ["nc", "-z", "-w", "5", DB_SERVICE_HOST, str(DB_SERVICE_PORT)],
            timeout=self.check_timeout,
        )
        if result.ok:
            return passed(f"{pod} can reach {target}")
        return failed(f"{pod} cannot reach {target}")

    def check_ingress(self) -> CheckOutcome:
        ingresses = self.kube.list_resources("ingresses", self.namespace)
        if not ingresses:
            return failed(f"no Ingress resources in {self.namespace}")
        return passed(f"{len(ingresses)} Ingress resources configured")
