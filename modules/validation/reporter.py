"""Validation result logging and report rendering."""

import json
import logging

from lib.constants import LOGGER_NAME

from .models import CheckRecord, CheckStatus, CategoryResult, ValidationReport

logger = logging.getLogger(LOGGER_NAME)

STATUS_MARKERS = {
    CheckStatus.PASS: "✓",
    CheckStatus.FAIL: "✗",
    CheckStatus.WARN: "⚠",
    CheckStatus.SKIP: "-",
}


class ValidationReporter:
    """Logs check records as they are merged and summarizes the final report.

    Stateless: one reporter serves any number of engine runs. Only the
    orchestrator's control thread calls into it.
    """

    def record(self, check: CheckRecord) -> None:
        """Log one check record."""
        marker = STATUS_MARKERS[check.status]
        if check.status is CheckStatus.PASS:
            logger.info("%s %s: %s", marker, check.name, check.message)
        elif check.status is CheckStatus.FAIL:
            logger.error("%s %s [%s]: %s", marker, check.name, check.severity.value, check.message)
        elif check.status is CheckStatus.WARN:
            logger.warning("%s %s: %s", marker, check.name, check.message)
        else:
            logger.info("%s %s skipped: %s", marker, check.name, check.message)

    def category_header(self, title: str) -> None:
        logger.info("")
        logger.info("--- %s ---", title)

    def category_summary(self, result: CategoryResult) -> None:
        logger.info(
            "%s: %s/%s passed, %s failed, %s warnings, %s skipped",
            result.category.value,
            result.passed,
            result.total,
            result.failed,
            result.warnings,
            result.skipped,
        )

    def print_summary(self, report: ValidationReport) -> None:
        """Print validation summary to the log."""
        logger.info("\n" + "=" * 60)
        logger.info(
            "Validation Summary (%s): %s/%s checks passed, %s failed, %s warnings, %s skipped",
            report.environment,
            report.total_passed,
            report.total_checks,
            report.total_failed,
            report.total_warnings,
            report.total_skipped,
        )

        if report.cancelled:
            logger.warning("Validation was cancelled before all categories ran")
        elif report.stopped_early:
            logger.error("Validation stopped early after a critical failure")

        failures = report.failures()
        if failures:
            logger.info("\nFailed checks:")
            for check in failures:
                logger.error("  ✗ %s/%s [%s]: %s", check.category.value, check.name, check.severity.value, check.message)
        else:
            logger.info("All checks passed!" if report.total_warnings == 0 else "No failed checks.")

        logger.info("=" * 60 + "\n")


def render_text(report: ValidationReport) -> str:
    """Plain-text table of every check."""
    lines = [
        f"Validation report for {report.environment} at {report.timestamp}",
        f"{'CATEGORY':<15} {'CHECK':<28} {'STATUS':<6} {'SEVERITY':<10} MESSAGE",
    ]
    for result in report.categories:
        for check in result.checks:
            lines.append(
                f"{check.category.value:<15} {check.name:<28} {check.status.value:<6} "
                f"{check.severity.value:<10} {check.message}"
            )
    lines.append(
        f"healthy={str(report.healthy).lower()} total={report.total_checks} passed={report.total_passed} "
        f"failed={report.total_failed} warnings={report.total_warnings} skipped={report.total_skipped}"
    )
    return "\n".join(lines)


def render_json(report: ValidationReport) -> str:
    return json.dumps(report.to_dict(), indent=2)
