"""
Cloud resource deletion for full-scope teardowns.

AWS managed services (RDS, ElastiCache, MSK, CloudFormation) are deleted
through boto3 clients. The EKS cluster goes through ``eksctl``, which removes
node groups before the control plane; GCP and Azure use their CLIs.

Every deletion is issued in asynchronous mode where the provider supports it:
the caller is told destruction was *initiated*, never that it completed.
"""

import logging
import subprocess  # nosec B404 - fixed argv lists, no shell
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from lib.constants import (
    AWS_REGION_DEFAULT,
    CLOUD_COMMAND_TIMEOUT,
    GCP_REGION_DEFAULT,
    LOGGER_NAME,
    RESOURCE_NAME_PREFIX,
)
from lib.validation import InputValidator

logger = logging.getLogger(LOGGER_NAME)

Runner = Callable[..., subprocess.CompletedProcess]
ClientFactory = Callable[[str], Any]

# Resource already gone: a retried teardown treats these as done
AWS_NOT_FOUND_CODES = (
    "DBInstanceNotFound",
    "DBInstanceNotFoundFault",
    "ReplicationGroupNotFoundFault",
    "NotFoundException",
)


@dataclass(frozen=True)
class ApiCall:
    """A boto3 client operation: ``client(service).<operation>(**params)``."""

    service: str
    operation: str
    params: Dict[str, Any]


@dataclass(frozen=True)
class CloudStep:
    """One provider deletion call, either a CLI argv or an AWS API call."""

    resource: str
    argv: Optional[List[str]] = None
    api_call: Optional[ApiCall] = None


@dataclass
class CloudStepResult:
    resource: str
    initiated: bool
    message: str


def _client_error_message(exc: ClientError) -> str:
    error = exc.response.get("Error", {})
    return f"{error.get('Code', 'ClientError')}: {error.get('Message', str(exc))}"


class CloudResourceClient:
    """Issues ordered, provider-specific deletions for one environment.

    Order: managed cluster, managed database, managed cache, managed broker,
    networking.
    """

    def __init__(
        self,
        provider: str,
        aws_region: str = AWS_REGION_DEFAULT,
        gcp_region: str = GCP_REGION_DEFAULT,
        timeout: int = CLOUD_COMMAND_TIMEOUT,
        runner: Optional[Runner] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        InputValidator.validate_provider(provider)
        self.provider = provider
        self.aws_region = aws_region
        self.gcp_region = gcp_region
        self.timeout = timeout
        self.runner = runner or subprocess.run
        self.client_factory = client_factory or self._boto3_client
        self._clients: Dict[str, Any] = {}

    def _boto3_client(self, service: str) -> Any:
        return boto3.client(
            service,
            region_name=self.aws_region,
            config=Config(connect_timeout=10, read_timeout=self.timeout, retries={"max_attempts": 3}),
        )

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self.client_factory(service)
        return self._clients[service]

    def _run(self, argv: List[str]) -> subprocess.CompletedProcess:
        return self.runner(argv, capture_output=True, text=True, timeout=self.timeout, check=False)

    def plan(self, environment: str) -> List[CloudStep]:
        """The ordered deletion steps for ``environment`` (no side effects)."""
        InputValidator.validate_environment(environment)
        name = f"{RESOURCE_NAME_PREFIX}-{environment}"

        if self.provider == "aws":
            return [
                CloudStep(
                    "EKS cluster",
                    argv=["eksctl", "delete", "cluster", "--name", name, "--region", self.aws_region],
                ),
                CloudStep(
                    "RDS instance",
                    api_call=ApiCall(
                        "rds",
                        "delete_db_instance",
                        {
                            "DBInstanceIdentifier": f"{name}-postgres",
                            "SkipFinalSnapshot": True,
                            "DeleteAutomatedBackups": True,
                        },
                    ),
                ),
                CloudStep(
                    "ElastiCache replication group",
                    api_call=ApiCall("elasticache", "delete_replication_group", {"ReplicationGroupId": f"{name}-redis"}),
                ),
                # ClusterArn is resolved from the cluster name at execution time
                CloudStep(
                    "MSK cluster",
                    api_call=ApiCall("kafka", "delete_cluster", {"ClusterName": f"{name}-kafka"}),
                ),
                CloudStep(
                    "VPC stack",
                    api_call=ApiCall("cloudformation", "delete_stack", {"StackName": f"{name}-vpc"}),
                ),
            ]
        if self.provider == "gcp":
            region = f"--region={self.gcp_region}"
            return [
                CloudStep("GKE cluster", argv=["gcloud", "container", "clusters", "delete", name, region, "--async", "--quiet"]),
                CloudStep("Cloud SQL instance", argv=["gcloud", "sql", "instances", "delete", f"{name}-postgres", "--async", "--quiet"]),
                CloudStep("Memorystore instance", argv=["gcloud", "redis", "instances", "delete", f"{name}-redis", region, "--async", "--quiet"]),
                CloudStep("VPC network", argv=["gcloud", "compute", "networks", "delete", f"{name}-vpc", "--quiet"]),
            ]
        if self.provider == "azure":
            # Resource group deletion cascades to every resource inside it
            return [
                CloudStep("Resource group", argv=["az", "group", "delete", "--name", f"{name}-rg", "--yes", "--no-wait"]),
            ]
        return []

    def destroy(self, environment: str) -> List[CloudStepResult]:
        """Issue every deletion step in order. A failed step does not stop later ones."""
        results = []
        for step in self.plan(environment):
            logger.info("Deleting %s...", step.resource)
            if step.api_call is not None:
                results.append(self._execute_api(step))
            else:
                results.append(self._execute_cli(step))
        return results

    def _execute_api(self, step: CloudStep) -> CloudStepResult:
        call = step.api_call
        params = dict(call.params)
        try:
            client = self._client(call.service)
            if call.service == "kafka":
                arn = self._resolve_msk_arn(client, params.pop("ClusterName"))
                if arn is None:
                    return CloudStepResult(step.resource, True, "no MSK cluster found, nothing to delete")
                params["ClusterArn"] = arn
            getattr(client, call.operation)(**params)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in AWS_NOT_FOUND_CODES:
                return CloudStepResult(step.resource, True, "not found, nothing to delete")
            return CloudStepResult(step.resource, False, _client_error_message(e))
        except BotoCoreError as e:
            return CloudStepResult(step.resource, False, str(e))
        return CloudStepResult(step.resource, True, "deletion initiated")

    @staticmethod
    def _resolve_msk_arn(client: Any, cluster_name: str) -> Optional[str]:
        """The ARN of the MSK cluster named exactly ``cluster_name``, or None."""
        paginator = client.get_paginator("list_clusters_v2")
        for page in paginator.paginate(ClusterNameFilter=cluster_name):
            for info in page.get("ClusterInfoList", []):
                if info.get("ClusterName") == cluster_name:
                    return info["ClusterArn"]
        return None

    def _execute_cli(self, step: CloudStep) -> CloudStepResult:
        argv = step.argv
        try:
            completed = self._run(argv)
        except FileNotFoundError:
            return CloudStepResult(step.resource, False, f"{argv[0]} not found in PATH")
        except subprocess.TimeoutExpired:
            return CloudStepResult(step.resource, False, f"{argv[0]} did not return within {self.timeout}s")

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip().splitlines()
            return CloudStepResult(
                step.resource,
                False,
                f"exit {completed.returncode}: {detail[-1] if detail else 'no output'}",
            )
        return CloudStepResult(step.resource, True, "deletion initiated")
