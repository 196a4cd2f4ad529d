"""Connectivity checks executed inside the database, cache and broker pods."""

from typing import List, Optional

from lib.constants import (
    DEFAULT_DATABASE,
    KAFKA_BOOTSTRAP,
    KAFKA_LABEL_SELECTOR,
    PG_USER,
    REDIS_LABEL_SELECTOR,
    TIMESCALEDB_LABEL_SELECTOR,
)
from lib.exceptions import WorkloadNotFound
from lib.kube_client import ExecResult

from .base_validator import BaseValidator, Check
from .models import Category, CheckOutcome, CheckSeverity, failed, passed, skipped, warned


class DatabaseValidator(BaseValidator):
    """Probes that each data store actually answers, not just that its pod runs."""

    category = Category.DATABASES
    title = "Databases"

    def __init__(self, *args, database: str = DEFAULT_DATABASE, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.database = database

    def checks(self) -> List[Check]:
        return [
            Check("postgres-connectivity", CheckSeverity.CRITICAL, self.check_postgres),
            Check("database-exists", CheckSeverity.IMPORTANT, self.check_database_exists),
            Check("timescaledb-extension", CheckSeverity.IMPORTANT, self.check_timescaledb_extension),
            Check("redis-connectivity", CheckSeverity.IMPORTANT, self.check_redis),
            Check("kafka-connectivity", CheckSeverity.IMPORTANT, self.check_kafka),
        ]

    def _exec(self, selector: str, command: List[str]) -> Optional[ExecResult]:
        try:
            return self.kube.exec_in_workload(self.namespace, selector, command, timeout=self.check_timeout)
        except WorkloadNotFound:
            return None

    def check_postgres(self) -> CheckOutcome:
        result = self._exec(TIMESCALEDB_LABEL_SELECTOR, ["pg_isready", "-U", PG_USER])
        if result is None:
            return skipped("no running TimescaleDB pod")
        if "accepting connections" in result.stdout:
            return passed(f"PostgreSQL accepting connections ({result.pod})")
        return failed(f"PostgreSQL not accepting connections: {(result.stdout or result.stderr).strip()}")

    def check_database_exists(self) -> CheckOutcome:
        result = self._exec(TIMESCALEDB_LABEL_SELECTOR, ["psql", "-U", PG_USER, "-lqt"])
        if result is None:
            return skipped("no running TimescaleDB pod")
        if not result.ok:
            return failed(f"could not list databases: {result.stderr.strip()}")
        names = {line.split("|")[0].strip() for line in result.stdout.splitlines() if "|" in line}
        if self.database in names:
            return passed(f"database {self.database} exists")
        return failed(f"database {self.database} not found")

    def check_timescaledb_extension(self) -> CheckOutcome:
        result = self._exec(
            TIMESCALEDB_LABEL_SELECTOR,
            [
                "psql", "-U", PG_USER, "-d", self.database, "-tAc",
                "SELECT extversion FROM pg_extension WHERE extname = 'timescaledb'",
            ],
        )
        if result is None:
            return skipped("no running TimescaleDB pod")
        version = result.stdout.strip()
        if result.ok and version:
            return passed(f"timescaledb extension {version} installed")
        return warned(f"timescaledb extension not installed in {self.database}")

    def check_redis(self) -> CheckOutcome:
        result = self._exec(REDIS_LABEL_SELECTOR, ["redis-cli", "PING"])
        if result is None:
            return skipped("no running Redis pod")
        if "PONG" in result.stdout:
            return passed(f"Redis responded to PING ({result.pod})")
        return failed(f"Redis did not answer PING: {(result.stdout or result.stderr).strip()}")

    def check_kafka(self) -> CheckOutcome:
        result = self._exec(
            KAFKA_LABEL_SELECTOR,
            ["kafka-topics.sh", "--bootstrap-server", KAFKA_BOOTSTRAP, "--list"],
        )
        if result is None:
            return skipped("no running Kafka pod")
        if result.ok:
            topics = [t for t in result.stdout.splitlines() if t.strip()]
            return passed(f"Kafka broker responding ({len(topics)} topics)")
        return failed(f"Kafka broker not responding: {result.stderr.strip()}")
