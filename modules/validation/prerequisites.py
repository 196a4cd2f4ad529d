"""Tooling and cluster-access prerequisite checks."""

import shutil
import subprocess  # nosec B404 - fixed argv, no shell
from typing import List

from .base_validator import BaseValidator, Check
from .models import Category, CheckOutcome, CheckSeverity, failed, passed, warned

TOOL_VERSION_TIMEOUT = 10


def _tool_version(argv: List[str]) -> str:
    completed = subprocess.run(argv, capture_output=True, text=True, timeout=TOOL_VERSION_TIMEOUT, check=False)
    if completed.returncode != 0:
        return ""
    output = (completed.stdout or "").strip().splitlines()
    return output[0] if output else ""


class PrerequisitesValidator(BaseValidator):
    """Verifies the operator tooling is installed and the cluster API answers."""

    category = Category.PREREQUISITES
    title = "Prerequisites"

    def checks(self) -> List[Check]:
        return [
            Check("kubectl-installed", CheckSeverity.CRITICAL, self.check_kubectl),
            Check("helm-installed", CheckSeverity.IMPORTANT, self.check_helm),
            Check("cluster-access", CheckSeverity.CRITICAL, self.check_cluster_access),
        ]

    def check_kubectl(self) -> CheckOutcome:
        if shutil.which("kubectl") is None:
            return failed("kubectl not found in PATH")
        version = _tool_version(["kubectl", "version", "--client"])
        if not version:
            return failed("kubectl is installed but 'kubectl version --client' failed")
        return passed(f"kubectl available ({version})")

    def check_helm(self) -> CheckOutcome:
        if shutil.which("helm") is None:
            return warned("helm not found in PATH (chart operations unavailable)")
        version = _tool_version(["helm", "version", "--short"])
        return passed(f"helm available ({version or 'version unknown'})")

    def check_cluster_access(self) -> CheckOutcome:
        if not self.kube.is_accessible():
            context = self.kube.context or "current context"
            return failed(f"cannot reach the Kubernetes API server ({context})")
        return passed(f"connected to Kubernetes {self.kube.get_server_version()}")
