"""Result types shared by every validator and the validation engine."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from lib.constants import (
    EXIT_ABORTED,
    EXIT_CRITICAL_FAILURE,
    EXIT_IMPORTANT_FAILURE,
    EXIT_SUCCESS,
)


class CheckStatus(Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    SKIP = "skip"


class CheckSeverity(Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    ADVISORY = "advisory"


class Category(Enum):
    """Validator categories, in execution order."""

    PREREQUISITES = "prerequisites"
    CLUSTER = "cluster"
    SERVICES = "services"
    DATABASES = "databases"
    SECURITY = "security"
    NETWORK = "network"
    RESOURCES = "resources"


CATEGORY_ORDER: Tuple[Category, ...] = tuple(Category)

# Omitted entirely from fast runs
SLOW_CATEGORIES = (Category.DATABASES, Category.NETWORK)


@dataclass(frozen=True)
class CheckOutcome:
    """What a single check function returns; the validator adds name, category and severity."""

    status: CheckStatus
    message: str
    details: Optional[Dict[str, Any]] = None


def passed(message: str, **details: Any) -> CheckOutcome:
    return CheckOutcome(CheckStatus.PASS, message, details or None)


def failed(message: str, **details: Any) -> CheckOutcome:
    return CheckOutcome(CheckStatus.FAIL, message, details or None)


def warned(message: str, **details: Any) -> CheckOutcome:
    return CheckOutcome(CheckStatus.WARN, message, details or None)


def skipped(message: str, **details: Any) -> CheckOutcome:
    return CheckOutcome(CheckStatus.SKIP, message, details or None)


@dataclass(frozen=True)
class CheckRecord:
    """
    Result of one check. Immutable.

    A failing Advisory check is recorded as WARN: advisory findings never
    affect health.
    """

    name: str
    category: Category
    status: CheckStatus
    severity: CheckSeverity
    message: str
    details: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if self.status is CheckStatus.FAIL and self.severity is CheckSeverity.ADVISORY:
            object.__setattr__(self, "status", CheckStatus.WARN)

    @classmethod
    def from_outcome(
        cls, name: str, category: Category, severity: CheckSeverity, outcome: CheckOutcome
    ) -> "CheckRecord":
        return cls(name, category, outcome.status, severity, outcome.message, outcome.details)

    @property
    def is_critical_failure(self) -> bool:
        return self.status is CheckStatus.FAIL and self.severity is CheckSeverity.CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "category": self.category.value,
            "status": self.status.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.details:
            data["details"] = self.details
        return data


@dataclass(frozen=True)
class CategoryResult:
    """Ordered checks of one category. Every count is derived from ``checks``."""

    category: Category
    checks: Tuple[CheckRecord, ...] = ()

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for c in self.checks if c.status is status)

    @property
    def total(self) -> int:
        return len(self.checks)

    @property
    def passed(self) -> int:
        return self._count(CheckStatus.PASS)

    @property
    def failed(self) -> int:
        return self._count(CheckStatus.FAIL)

    @property
    def warnings(self) -> int:
        return self._count(CheckStatus.WARN)

    @property
    def skipped(self) -> int:
        return self._count(CheckStatus.SKIP)

    @property
    def healthy(self) -> bool:
        return self.failed == 0

    @property
    def has_critical_failure(self) -> bool:
        return any(c.is_critical_failure for c in self.checks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "healthy": self.healthy,
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "warnings": self.warnings,
            "skipped": self.skipped,
            "checks": [c.to_dict() for c in self.checks],
        }


@dataclass(frozen=True)
class ValidationReport:
    """Point-in-time snapshot of one validation run."""

    timestamp: str
    environment: str
    categories: Tuple[CategoryResult, ...] = ()
    fast_mode: bool = False
    stopped_early: bool = False
    cancelled: bool = False

    @property
    def healthy(self) -> bool:
        return all(c.healthy for c in self.categories)

    @property
    def total_checks(self) -> int:
        return sum(c.total for c in self.categories)

    @property
    def total_passed(self) -> int:
        return sum(c.passed for c in self.categories)

    @property
    def total_failed(self) -> int:
        return sum(c.failed for c in self.categories)

    @property
    def total_warnings(self) -> int:
        return sum(c.warnings for c in self.categories)

    @property
    def total_skipped(self) -> int:
        return sum(c.skipped for c in self.categories)

    def category(self, category: Category) -> Optional[CategoryResult]:
        for result in self.categories:
            if result.category is category:
                return result
        return None

    def failures(self):
        return [c for result in self.categories for c in result.checks if c.status is CheckStatus.FAIL]

    @property
    def exit_code(self) -> int:
        """0 healthy, 2 any critical failure, 3 important-only failures, 4 cancelled."""
        if self.cancelled:
            return EXIT_ABORTED
        if any(result.has_critical_failure for result in self.categories):
            return EXIT_CRITICAL_FAILURE
        if not self.healthy:
            return EXIT_IMPORTANT_FAILURE
        return EXIT_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "healthy": self.healthy,
            "fast_mode": self.fast_mode,
            "stopped_early": self.stopped_early,
            "cancelled": self.cancelled,
            "total_checks": self.total_checks,
            "total_passed": self.total_passed,
            "total_failed": self.total_failed,
            "total_warnings": self.total_warnings,
            "total_skipped": self.total_skipped,
            "exit_code": self.exit_code,
            "categories": [c.to_dict() for c in self.categories],
        }
