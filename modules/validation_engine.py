"""
Validation engine: runs the category validators in a fixed order and
aggregates their results into one report and exit code.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from lib.constants import CHECK_TIMEOUT, DEFAULT_DATABASE, LOGGER_NAME, VALIDATION_MAX_WORKERS
from lib.kube_client import KubeClient
from lib.utils import CancellationToken, utc_timestamp

from .validation import (
    CATEGORY_ORDER,
    SLOW_CATEGORIES,
    VALIDATORS,
    BaseValidator,
    Category,
    CategoryResult,
    ValidationReport,
    ValidationReporter,
)

logger = logging.getLogger(LOGGER_NAME)


class ValidationEngine:
    """Coordinates category validators against one environment."""

    def __init__(
        self,
        kube: KubeClient,
        namespace: str,
        environment: str,
        database: str = DEFAULT_DATABASE,
        check_timeout: float = CHECK_TIMEOUT,
        max_workers: int = VALIDATION_MAX_WORKERS,
    ) -> None:
        self.kube = kube
        self.namespace = namespace
        self.environment = environment
        self.database = database
        self.check_timeout = check_timeout
        self.max_workers = max_workers
        self.reporter = ValidationReporter()

    def _validator(self, category: Category) -> BaseValidator:
        kwargs = {"check_timeout": self.check_timeout, "max_workers": self.max_workers}
        if category is Category.DATABASES:
            kwargs["database"] = self.database
        return VALIDATORS[category](self.kube, self.namespace, self.reporter, **kwargs)

    def run(
        self,
        fast_mode: bool = False,
        stop_on_critical: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[ValidationReport, int]:
        """
        Run the full validation.

        Args:
            fast_mode: Omit the database and network categories entirely
            stop_on_critical: Stop after the first category with a critical failure
            cancel_token: Checked before each category starts

        Returns:
            (report, exit code)
        """
        plan = [c for c in CATEGORY_ORDER if not (fast_mode and c in SLOW_CATEGORIES)]
        return self._execute(plan, fast_mode, stop_on_critical, cancel_token)

    def run_categories(
        self,
        categories: Iterable[Category],
        stop_on_critical: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[ValidationReport, int]:
        """Run only the named categories, still in canonical order."""
        wanted = set(categories)
        plan = [c for c in CATEGORY_ORDER if c in wanted]
        return self._execute(plan, False, stop_on_critical, cancel_token)

    def _execute(
        self,
        plan: Sequence[Category],
        fast_mode: bool,
        stop_on_critical: bool,
        cancel_token: Optional[CancellationToken],
    ) -> Tuple[ValidationReport, int]:
        logger.info("=" * 60)
        logger.info(
            "Validating %s (namespace: %s%s)",
            self.environment,
            self.namespace,
            ", fast mode" if fast_mode else "",
        )
        logger.info("=" * 60)

        results: List[CategoryResult] = []
        stopped_early = False
        cancelled = False

        for index, category in enumerate(plan):
            if cancel_token is not None and cancel_token.cancelled:
                logger.warning("Validation cancelled before %s: %s", category.value, cancel_token.reason)
                cancelled = True
                break

            result = self._validator(category).run()
            results.append(result)

            if result.has_critical_failure and (stop_on_critical or category is Category.PREREQUISITES):
                remaining = [c.value for c in plan[index + 1 :]]
                if remaining:
                    stopped_early = True
                    logger.error(
                        "Critical failure in %s, not running: %s",
                        category.value,
                        ", ".join(remaining),
                    )
                break

        report = ValidationReport(
            timestamp=utc_timestamp(),
            environment=self.environment,
            categories=tuple(results),
            fast_mode=fast_mode,
            stopped_early=stopped_early,
            cancelled=cancelled,
        )
        self.reporter.print_summary(report)
        return report, report.exit_code
