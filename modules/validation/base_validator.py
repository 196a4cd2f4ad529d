"""Base validator: concurrent check fan-out with a per-check timeout."""

import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, List

from lib.constants import CHECK_TIMEOUT, LOGGER_NAME, VALIDATION_MAX_WORKERS
from lib.kube_client import KubeClient

from .models import Category, CategoryResult, CheckOutcome, CheckRecord, CheckSeverity, CheckStatus
from .reporter import ValidationReporter

logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class Check:
    """A named check declared by a validator."""

    name: str
    severity: CheckSeverity
    fn: Callable[[], CheckOutcome]


class BaseValidator:
    """Base class for all category validators.

    Subclasses set ``category`` and ``title`` and return their checks, in
    report order, from :meth:`checks`. Check functions are read-only queries
    and may run concurrently; their records are merged back in declaration
    order on the calling thread.
    """

    category: Category
    title: str = ""

    def __init__(
        self,
        kube: KubeClient,
        namespace: str,
        reporter: ValidationReporter,
        check_timeout: float = CHECK_TIMEOUT,
        max_workers: int = VALIDATION_MAX_WORKERS,
    ) -> None:
        self.kube = kube
        self.namespace = namespace
        self.reporter = reporter
        self.check_timeout = check_timeout
        self.max_workers = max_workers

    def checks(self) -> List[Check]:
        raise NotImplementedError

    def run(self) -> CategoryResult:
        """Run every check and return the category result."""
        self.reporter.category_header(self.title or self.category.value)
        declared = self.checks()
        if not declared:
            return CategoryResult(self.category, ())

        workers = max(1, min(self.max_workers, len(declared)))
        # Queued checks start once earlier ones finish, so the deadline grows per wave
        waves = math.ceil(len(declared) / workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"validate-{self.category.value}")
        try:
            start = time.monotonic()
            futures = [executor.submit(check.fn) for check in declared]
            deadline = start + self.check_timeout * waves
            records = [self._collect(check, future, deadline) for check, future in zip(declared, futures)]
        finally:
            # Timed-out checks keep their worker; never block on them
            executor.shutdown(wait=False, cancel_futures=True)

        for record in records:
            self.reporter.record(record)
        result = CategoryResult(self.category, tuple(records))
        self.reporter.category_summary(result)
        return result

    def _collect(self, check: Check, future: Future, deadline: float) -> CheckRecord:
        try:
            outcome = future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            future.cancel()
            outcome = CheckOutcome(
                CheckStatus.FAIL,
                f"check timed out after {self.check_timeout}s",
                {"error": "timeout"},
            )
        except Exception as e:
            logger.debug("Check %s raised", check.name, exc_info=True)
            outcome = CheckOutcome(
                CheckStatus.FAIL,
                f"error running check: {e}",
                {"error": type(e).__name__},
            )
        return CheckRecord.from_outcome(check.name, self.category, check.severity, outcome)
