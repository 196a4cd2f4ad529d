"""
Teardown orchestration: a confirmation-gated state machine that drains
workloads, deletes namespaces, deletes cloud resources and removes local
state for one environment.

Draining, namespace deletion and local cleanup are best effort: their
failures are reported as warnings and the sequence continues.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from lib.cloud import CloudResourceClient
from lib.constants import (
    CONFIRM_PHRASE,
    DEFAULT_DATABASE,
    DEFAULT_NAMESPACE,
    DRAIN_GRACE_PERIOD,
    DRAIN_POLL_INTERVAL,
    EXIT_ABORTED,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    LOGGER_NAME,
    NAMESPACE_DELETE_TIMEOUT,
    PRODUCTION_CONFIRM_PHRASE,
    PRODUCTION_ENVIRONMENT,
    SHARED_INFRA_NAMESPACES,
    TEARDOWN_MAX_WORKERS,
)
from lib.exceptions import BackupFailed, ConfigurationError, LifecycleError, OperationCancelled, PartialFailure
from lib.kube_client import KubeClient
from lib.utils import CancellationToken, EnvironmentState, confirm_phrase, utc_timestamp
from lib.validation import InputValidator
from lib.waiter import wait_for_condition

logger = logging.getLogger(LOGGER_NAME)

BEST_EFFORT_ERRORS = (ApiException, HTTPError, LifecycleError, OSError)


class TeardownScope(Enum):
    CLUSTER_ONLY = "cluster_only"
    FULL = "full"


class TeardownState(Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    DRAINING = "draining"
    DELETING_CLUSTER_RESOURCES = "deleting_cluster_resources"
    DELETING_CLOUD_RESOURCES = "deleting_cloud_resources"
    CLEANING_LOCAL_STATE = "cleaning_local_state"
    DONE = "done"
    ABORTED = "aborted"


ALLOWED_TRANSITIONS = {
    TeardownState.REQUESTED: (TeardownState.CONFIRMED, TeardownState.ABORTED),
    TeardownState.CONFIRMED: (TeardownState.DRAINING, TeardownState.ABORTED),
    TeardownState.DRAINING: (TeardownState.DELETING_CLUSTER_RESOURCES,),
    TeardownState.DELETING_CLUSTER_RESOURCES: (
        TeardownState.DELETING_CLOUD_RESOURCES,
        TeardownState.CLEANING_LOCAL_STATE,
    ),
    TeardownState.DELETING_CLOUD_RESOURCES: (TeardownState.CLEANING_LOCAL_STATE,),
    TeardownState.CLEANING_LOCAL_STATE: (TeardownState.DONE,),
    TeardownState.DONE: (),
    TeardownState.ABORTED: (),
}

STATUS_MARKERS = {"ok": "✓", "warn": "⚠", "fail": "✗", "skip": "-", "dry-run": "·"}


@dataclass(frozen=True)
class TeardownPlan:
    environment: str
    provider: str = "k8s"
    scope: TeardownScope = TeardownScope.CLUSTER_ONLY
    namespace: str = DEFAULT_NAMESPACE
    additional_namespaces: Tuple[str, ...] = ()
    force: bool = False
    dry_run: bool = False
    backup_before: bool = False
    database: str = DEFAULT_DATABASE

    def validate(self) -> None:
        InputValidator.validate_environment(self.environment)
        InputValidator.validate_provider(self.provider)
        InputValidator.validate_kubernetes_namespace(self.namespace)
        for namespace in self.additional_namespaces:
            InputValidator.validate_kubernetes_namespace(namespace)
        if self.backup_before:
            InputValidator.validate_database_name(self.database)

    @property
    def is_production(self) -> bool:
        return self.environment == PRODUCTION_ENVIRONMENT

    @property
    def deletes_cloud_resources(self) -> bool:
        return self.scope is TeardownScope.FULL and self.provider != "k8s"

    @property
    def drain_namespaces(self) -> List[str]:
        return _unique([self.namespace, *self.additional_namespaces])

    @property
    def delete_namespaces(self) -> List[str]:
        return _unique([*self.drain_namespaces, *SHARED_INFRA_NAMESPACES])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment,
            "provider": self.provider,
            "scope": self.scope.value,
            "namespace": self.namespace,
            "additional_namespaces": list(self.additional_namespaces),
            "force": self.force,
            "dry_run": self.dry_run,
            "backup_before": self.backup_before,
        }


def _unique(items: List[str]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


@dataclass(frozen=True)
class TransitionRecord:
    state: TeardownState
    status: str
    message: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "status": self.status, "message": self.message, "timestamp": self.timestamp}


@dataclass
class TeardownResult:
    plan: TeardownPlan
    final_state: TeardownState = TeardownState.REQUESTED
    transitions: List[TransitionRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    exit_code: int = EXIT_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "final_state": self.final_state.value,
            "exit_code": self.exit_code,
            "warnings": list(self.warnings),
            "transitions": [t.to_dict() for t in self.transitions],
        }


class TeardownOrchestrator:
    """Runs one teardown plan to completion, abort or failure."""

    def __init__(
        self,
        plan: TeardownPlan,
        kube: Optional[KubeClient] = None,
        cloud: Optional[CloudResourceClient] = None,
        env_state: Optional[EnvironmentState] = None,
        backup_manager=None,
        input_fn: Callable[[str], str] = input,
        cancel_token: Optional[CancellationToken] = None,
        drain_grace_period: float = DRAIN_GRACE_PERIOD,
        poll_interval: float = DRAIN_POLL_INTERVAL,
        namespace_delete_timeout: float = NAMESPACE_DELETE_TIMEOUT,
    ) -> None:
        plan.validate()
        if not plan.dry_run:
            if kube is None:
                raise ConfigurationError("A Kubernetes client is required for teardown")
            if plan.deletes_cloud_resources and cloud is None:
                raise ConfigurationError(f"A cloud client is required to delete {plan.provider} resources")
            if plan.backup_before and backup_manager is None:
                raise ConfigurationError("A backup manager is required when backing up before teardown")
        self.plan = plan
        self.kube = kube
        self.cloud = cloud
        self.env_state = env_state
        self.backup_manager = backup_manager
        self.input_fn = input_fn
        self.cancel_token = cancel_token
        self.drain_grace_period = drain_grace_period
        self.poll_interval = poll_interval
        self.namespace_delete_timeout = namespace_delete_timeout
        self.result = TeardownResult(plan=plan)

    # =============================
    # State bookkeeping
    # =============================
    def _record(self, state: TeardownState, status: str, message: str) -> None:
        current = self.result.final_state
        if state is not current and state not in ALLOWED_TRANSITIONS[current]:
            raise LifecycleError(f"Illegal teardown transition {current.value} -> {state.value}")
        self.result.final_state = state
        self.result.transitions.append(TransitionRecord(state, status, message, utc_timestamp()))
        log = {"fail": logger.error, "warn": logger.warning}.get(status, logger.info)
        log("%s [%s] %s", STATUS_MARKERS.get(status, "?"), state.value, message)

    def _warn(self, failure: PartialFailure) -> None:
        self.result.warnings.append(str(failure))
        logger.warning("⚠ %s", failure)

    def _abort(self, message: str, exit_code: int = EXIT_ABORTED) -> TeardownResult:
        self._record(TeardownState.ABORTED, "fail" if exit_code == EXIT_FAILURE else "skip", message)
        self.result.exit_code = exit_code
        return self.result

    def _cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def _stop_cancelled(self, next_state: TeardownState) -> TeardownResult:
        reason = self.cancel_token.reason if self.cancel_token else "cancelled"
        if self.result.final_state in (TeardownState.REQUESTED, TeardownState.CONFIRMED):
            return self._abort(f"Cancelled before {next_state.value}: {reason}")
        logger.error(
            "Teardown cancelled before %s: %s. No further destructive steps were taken.",
            next_state.value,
            reason,
        )
        self.result.warnings.append(f"cancelled before {next_state.value}: {reason}")
        self.result.exit_code = EXIT_ABORTED
        return self.result

    # =============================
    # Run
    # =============================
    def run(self) -> TeardownResult:
        plan = self.plan
        logger.info("=" * 60)
        logger.info(
            "Teardown of %s (provider: %s, scope: %s%s)",
            plan.environment,
            plan.provider,
            plan.scope.value,
            ", DRY-RUN" if plan.dry_run else "",
        )
        logger.info("=" * 60)
        self.result.transitions.append(
            TransitionRecord(TeardownState.REQUESTED, "ok", "teardown requested", utc_timestamp())
        )

        if plan.dry_run:
            return self._dry_run()

        if not self._confirm():
            return self._abort("Confirmation declined; nothing was deleted")
        self._record(TeardownState.CONFIRMED, "ok", "force used, confirmation bypassed" if plan.force else "confirmed")

        if plan.backup_before:
            if self._cancelled():
                return self._stop_cancelled(TeardownState.DRAINING)
            try:
                metadata = self.backup_manager.create_backup(plan.database, cancel_token=self.cancel_token)
            except OperationCancelled as e:
                return self._abort(f"Cancelled during pre-teardown backup, nothing was deleted: {e}")
            except (BackupFailed, LifecycleError) as e:
                return self._abort(f"Pre-teardown backup failed, nothing was deleted: {e}", EXIT_FAILURE)
            logger.info("Pre-teardown backup %s completed", metadata.backup_id)

        steps = [
            (TeardownState.DRAINING, self._drain),
            (TeardownState.DELETING_CLUSTER_RESOURCES, self._delete_cluster_resources),
        ]
        if plan.deletes_cloud_resources:
            steps.append((TeardownState.DELETING_CLOUD_RESOURCES, self._delete_cloud_resources))
        else:
            logger.info("Cloud resources not in scope (provider %s, scope %s)", plan.provider, plan.scope.value)
        steps.append((TeardownState.CLEANING_LOCAL_STATE, self._clean_local_state))
        for state, step in steps:
            if self._cancelled():
                return self._stop_cancelled(state)
            status, message = step()
            self._record(state, status, message)
            if status == "fail":
                logger.error("Teardown stopped at %s. No further destructive steps were taken.", state.value)
                self.result.exit_code = EXIT_FAILURE
                return self.result

        self._record(TeardownState.DONE, "warn" if self.result.warnings else "ok", self._summary())
        return self.result

    def _summary(self) -> str:
        if self.plan.deletes_cloud_resources:
            base = "Teardown complete; cloud resource destruction initiated and may take several minutes to finish"
        else:
            base = "Teardown complete"
        if self.result.warnings:
            return f"{base} with {len(self.result.warnings)} warning(s)"
        return base

    def _confirm(self) -> bool:
        plan = self.plan
        if plan.force:
            logger.warning(
                "AUDIT: --force used, confirmation gates bypassed for teardown of %s (provider %s, scope %s)",
                plan.environment,
                plan.provider,
                plan.scope.value,
            )
            return True

        logger.warning(
            "This will permanently delete namespaces %s%s",
            ", ".join(plan.delete_namespaces),
            f" and all {plan.provider} resources" if plan.deletes_cloud_resources else "",
        )
        if plan.is_production:
            if not confirm_phrase(
                f"Type '{PRODUCTION_CONFIRM_PHRASE}' to tear down the production environment: ",
                PRODUCTION_CONFIRM_PHRASE,
                self.input_fn,
            ):
                logger.info("Production confirmation phrase not given")
                return False
        if not confirm_phrase(f"Type '{CONFIRM_PHRASE}' to continue: ", CONFIRM_PHRASE, self.input_fn):
            logger.info("Teardown not confirmed")
            return False
        return True

    def _dry_run(self) -> TeardownResult:
        plan = self.plan
        self._record(TeardownState.CONFIRMED, "dry-run", "[DRY-RUN] confirmation not requested")
        self._record(
            TeardownState.DRAINING,
            "dry-run",
            f"[DRY-RUN] Would scale deployments to 0 and delete jobs/cronjobs in {', '.join(plan.drain_namespaces)}",
        )
        self._record(
            TeardownState.DELETING_CLUSTER_RESOURCES,
            "dry-run",
            f"[DRY-RUN] Would delete namespaces {', '.join(plan.delete_namespaces)}",
        )
        if plan.deletes_cloud_resources:
            cloud = self.cloud or CloudResourceClient(plan.provider)
            resources = ", ".join(step.resource for step in cloud.plan(plan.environment))
            self._record(
                TeardownState.DELETING_CLOUD_RESOURCES,
                "dry-run",
                f"[DRY-RUN] Would delete {plan.provider} resources: {resources}",
            )
        self._record(TeardownState.CLEANING_LOCAL_STATE, "dry-run", f"[DRY-RUN] Would remove local state for {plan.environment}")
        self._record(TeardownState.DONE, "dry-run", "[DRY-RUN] No changes made")
        return self.result

    # =============================
    # Destructive steps
    # =============================
    def _drain(self) -> Tuple[str, str]:
        drained = []
        for namespace in self.plan.drain_namespaces:
            try:
                if not self.kube.namespace_exists(namespace):
                    logger.info("Namespace %s not found, nothing to drain", namespace)
                    continue
                scaled = self.kube.scale_all_deployments(namespace, 0)
                jobs = self.kube.delete_jobs(namespace)
                cronjobs = self.kube.delete_cronjobs(namespace)
                logger.info(
                    "Drained %s: %s deployments scaled to 0, %s jobs and %s cronjobs deleted",
                    namespace,
                    len(scaled),
                    jobs,
                    cronjobs,
                )
                drained.append(namespace)
            except BEST_EFFORT_ERRORS as e:
                self._warn(PartialFailure(TeardownState.DRAINING.value, f"draining {namespace} failed: {e}"))

        if drained and not wait_for_condition(
            "workload pods to terminate",
            lambda: self._pods_gone(drained),
            timeout=self.drain_grace_period,
            interval=self.poll_interval,
            logger=logger,
            cancel_token=self.cancel_token,
        ):
            self._warn(
                PartialFailure(
                    TeardownState.DRAINING.value,
                    f"pods still present after {self.drain_grace_period}s grace period, continuing",
                )
            )

        status = "warn" if any(w.startswith(TeardownState.DRAINING.value) for w in self.result.warnings) else "ok"
        return status, f"drained {len(drained)} namespace(s)"

    def _pods_gone(self, namespaces: List[str]) -> Tuple[bool, str]:
        remaining = 0
        for namespace in namespaces:
            pods = self.kube.get_pods(namespace)
            remaining += sum(1 for p in pods if (p.get("status") or {}).get("phase") not in ("Succeeded", "Failed"))
        return remaining == 0, f"{remaining} pods remaining"

    def _delete_namespace(self, namespace: str) -> Tuple[str, Optional[str]]:
        """Returns (outcome, error) where outcome is deleted, absent or error."""
        try:
            if not self.kube.delete_namespace(namespace):
                return "absent", None
            gone = self.kube.wait_for_condition(
                "namespaces",
                namespace,
                "Deleted",
                timeout=self.namespace_delete_timeout,
                interval=self.poll_interval,
            )
            if not gone:
                return "deleted", f"namespace {namespace} still terminating after {self.namespace_delete_timeout}s"
            return "deleted", None
        except BEST_EFFORT_ERRORS as e:
            return "error", f"deleting namespace {namespace} failed: {e}"

    def _delete_cluster_resources(self) -> Tuple[str, str]:
        namespaces = self.plan.delete_namespaces
        with ThreadPoolExecutor(max_workers=min(TEARDOWN_MAX_WORKERS, len(namespaces))) as executor:
            outcomes = list(executor.map(self._delete_namespace, namespaces))

        deleted = []
        for namespace, (outcome, error) in zip(namespaces, outcomes):
            if outcome == "deleted":
                deleted.append(namespace)
            elif outcome == "absent":
                logger.info("Namespace %s already absent", namespace)
            if error:
                self._warn(PartialFailure(TeardownState.DELETING_CLUSTER_RESOURCES.value, error))

        had_errors = any(error for _, error in outcomes)
        message = f"deleted namespaces: {', '.join(deleted) if deleted else 'none'}"
        return ("warn" if had_errors else "ok"), message

    def _delete_cloud_resources(self) -> Tuple[str, str]:
        plan = self.plan
        results = self.cloud.destroy(plan.environment)
        failed = [r for r in results if not r.initiated]
        for r in results:
            logger.info("%s %s: %s", "✓" if r.initiated else "✗", r.resource, r.message)
        if failed:
            return "fail", (
                "cloud deletion failed for "
                + ", ".join(f"{r.resource} ({r.message})" for r in failed)
                + "; local state kept so the teardown can be retried"
            )
        return "ok", (
            f"{plan.provider} resource destruction initiated ({len(results)} deletions issued); "
            "resources may take several minutes to disappear"
        )

    def _clean_local_state(self) -> Tuple[str, str]:
        if self.env_state is None:
            return "skip", "no local state configured"
        try:
            leftovers = self.env_state.purge()
        except OSError as e:
            leftovers = [str(e)]
        if leftovers:
            self._warn(
                PartialFailure(
                    TeardownState.CLEANING_LOCAL_STATE.value,
                    f"could not remove: {', '.join(leftovers)}",
                )
            )
            return "warn", f"local state partially removed ({len(leftovers)} leftover path(s))"
        return "ok", f"local state for {self.plan.environment} removed"
