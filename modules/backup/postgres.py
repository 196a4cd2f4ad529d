"""
Postgres operations executed inside the database workload.

Binary payloads cross the exec channel base64-encoded: snapshots come back on
stdout, artifacts go in on stdin.
"""

import base64
import binascii
import logging
import shlex
from datetime import datetime
from typing import List, Optional

from lib.constants import (
    BACKUP_BASE_TIMEOUT,
    BACKUP_BYTES_PER_SECOND,
    BACKUP_MAX_TIMEOUT,
    EXEC_TIMEOUT,
    LOGGER_NAME,
    PG_DATA_DIR,
    PG_SCRATCH_DIR,
    PG_USER,
    PG_VERIFY_PORT,
    PG_WAL_ARCHIVE_DIR,
    TIMESCALEDB_LABEL_SELECTOR,
)
from lib.exceptions import RemoteCommandError, WorkloadNotFound
from lib.kube_client import ExecResult, KubeClient
from lib.validation import InputValidator

logger = logging.getLogger(LOGGER_NAME)


def scaled_timeout(size_bytes: int) -> float:
    """Exec timeout for moving ``size_bytes``: proportional, but bounded."""
    return min(BACKUP_MAX_TIMEOUT, BACKUP_BASE_TIMEOUT + size_bytes / BACKUP_BYTES_PER_SECOND)


class PostgresWorkload:
    """The Postgres/TimescaleDB pod of one namespace."""

    def __init__(self, kube: KubeClient, namespace: str, label_selector: str = TIMESCALEDB_LABEL_SELECTOR) -> None:
        self.kube = kube
        self.namespace = namespace
        self.label_selector = label_selector

    def pod(self) -> str:
        pod = self.kube.find_running_pod(self.namespace, self.label_selector)
        if pod is None:
            raise WorkloadNotFound(f"No running database pod matches {self.label_selector} in {self.namespace}")
        return pod

    def _sh(
        self,
        description: str,
        script: str,
        timeout: float = EXEC_TIMEOUT,
        stdin_data: Optional[str] = None,
        pod: Optional[str] = None,
    ) -> ExecResult:
        result = self.kube.exec_in_pod(
            self.namespace,
            pod or self.pod(),
            ["sh", "-c", script],
            stdin_data=stdin_data,
            timeout=timeout,
        )
        if not result.ok:
            raise RemoteCommandError(description, result.exit_code, result.stderr)
        return result

    def query(
        self,
        database: str,
        sql: str,
        port: Optional[int] = None,
        timeout: float = EXEC_TIMEOUT,
        pod: Optional[str] = None,
    ) -> str:
        """Run one SQL statement and return its unaligned, tuples-only output."""
        InputValidator.validate_database_name(database)
        argv = ["psql", "-U", PG_USER, "-d", database, "-tAc", sql]
        if port is not None:
            argv[1:1] = ["-h", "localhost", "-p", str(port)]
        script = " ".join(shlex.quote(a) for a in argv)
        return self._sh(f"psql on {database}", script, timeout, pod=pod).stdout.strip()

    def query_int(self, database: str, sql: str, port: Optional[int] = None, pod: Optional[str] = None) -> int:
        """Run a query expected to return a single integer (empty output counts as 0)."""
        output = self.query(database, sql, port, pod=pod)
        try:
            return int(output or 0)
        except ValueError as e:
            raise RemoteCommandError(f"psql on {database}", 0, f"expected an integer, got {output[:80]!r}") from e

    def database_size(self, database: str, port: Optional[int] = None) -> int:
        return self.query_int(database, f"SELECT pg_database_size('{database}')", port)

    def table_count(self, database: str, port: Optional[int] = None, pod: Optional[str] = None) -> int:
        return self.query_int(
            database,
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = 'public'",
            port,
            pod=pod,
        )

    def current_wal_lsn(self, database: str) -> Optional[str]:
        """Current WAL position, or None when it cannot be read."""
        try:
            return self.query(database, "SELECT pg_current_wal_lsn()") or None
        except RemoteCommandError as e:
            logger.warning("Could not read WAL position, point-in-time recovery will be unavailable: %s", e)
            return None

    def _read_base64(self, description: str, script: str, timeout: float) -> bytes:
        output = self._sh(description, script, timeout).stdout
        try:
            return base64.b64decode("".join(output.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise RemoteCommandError(description, 0, f"corrupt base64 stream: {e}") from e

    def dump_base_backup(self, timeout: float) -> bytes:
        """Full physical backup as a tar archive of the data directory."""
        target = f"{PG_SCRATCH_DIR}/base.tar"
        script = (
            f"mkdir -p {PG_SCRATCH_DIR} && "
            f"pg_basebackup -h localhost -U {PG_USER} -D - -Ft -X fetch > {target} && "
            f"base64 -w0 {target}; status=$?; rm -f {target}; exit $status"
        )
        return self._read_base64("pg_basebackup", script, timeout)

    def dump_wal(self, database: str, timeout: float) -> bytes:
        """Close the current WAL segment and archive every segment in pg_wal."""
        self.query(database, "SELECT pg_switch_wal()")
        target = f"{PG_SCRATCH_DIR}/wal.tar"
        script = (
            f"mkdir -p {PG_SCRATCH_DIR} && "
            f"tar -C {PG_DATA_DIR} -cf {target} pg_wal && "
            f"base64 -w0 {target}; status=$?; rm -f {target}; exit $status"
        )
        return self._read_base64("WAL archive", script, timeout)

    def upload(self, data: bytes, remote_path: str, timeout: float, pod: Optional[str] = None) -> None:
        """Write ``data`` to ``remote_path`` inside the pod."""
        InputValidator.validate_safe_filesystem_path(remote_path.lstrip("/"), "remote path")
        encoded = base64.b64encode(data).decode("ascii")
        path = shlex.quote(remote_path)
        # The exec channel has no EOF, so read exactly the payload length
        script = f"mkdir -p $(dirname {path}) && head -c {len(encoded)} | base64 -d > {path}"
        self._sh(f"upload to {remote_path}", script, timeout, stdin_data=encoded, pod=pod)

    def remove(self, paths: List[str], pod: Optional[str] = None) -> None:
        self._sh("cleanup", "rm -rf " + " ".join(shlex.quote(p) for p in paths), pod=pod)

    @staticmethod
    def _recovery_script(data_dir: str, recovery_target: Optional[datetime]) -> str:
        settings = [f"restore_command = 'cp {PG_WAL_ARCHIVE_DIR}/%f %p'"]
        if recovery_target is not None:
            settings.append(f"recovery_target_time = '{recovery_target.isoformat()}'")
            settings.append("recovery_target_action = 'promote'")
        commands = [f"echo {shlex.quote(line)} >> {data_dir}/postgresql.auto.conf" for line in settings]
        commands.append(f"touch {data_dir}/recovery.signal")
        return " && ".join(commands)

    def replace_data_dir(
        self,
        base_archive: str,
        wal_archive: Optional[str],
        recovery_target: Optional[datetime],
        timeout: float,
        pod: Optional[str] = None,
    ) -> None:
        """
        Stop the server, swap in the extracted base backup and start it again.

        WAL from ``wal_archive`` is placed in the WAL archive directory; archive
        recovery is configured whenever WAL replay or a recovery target applies.
        """
        pod = pod or self.pod()
        # The server may already be down
        stop = self.kube.exec_in_pod(
            self.namespace,
            pod,
            ["sh", "-c", f"pg_ctl -D {PG_DATA_DIR} -m fast stop"],
            timeout=EXEC_TIMEOUT,
        )
        if not stop.ok:
            logger.warning("pg_ctl stop exited %s: %s", stop.exit_code, stop.stderr.strip())

        steps = [
            f"find {PG_DATA_DIR} -mindepth 1 -delete",
            f"tar -xf {shlex.quote(base_archive)} -C {PG_DATA_DIR}",
        ]
        if wal_archive:
            steps.append(f"mkdir -p {PG_WAL_ARCHIVE_DIR}")
            steps.append(f"tar -xf {shlex.quote(wal_archive)} -C {PG_WAL_ARCHIVE_DIR} --strip-components=1")
        if wal_archive or recovery_target is not None:
            steps.append(self._recovery_script(PG_DATA_DIR, recovery_target))
        steps.append(f"pg_ctl -D {PG_DATA_DIR} -w -t {int(timeout)} start")
        self._sh("restore data directory", " && ".join(steps), timeout, pod=pod)

    def scratch_instance_table_count(
        self,
        base_archive: str,
        wal_archive: Optional[str],
        database: str,
        work_dir: str,
        timeout: float,
        pod: Optional[str] = None,
    ) -> int:
        """
        Start a throwaway server from the archives on a side port, count the
        tables in ``database`` and remove it again. The live server is untouched.
        """
        pod = pod or self.pod()
        data_dir = f"{work_dir}/data"
        steps = [
            f"mkdir -p {data_dir}",
            f"chmod 700 {data_dir}",
            f"tar -xf {shlex.quote(base_archive)} -C {data_dir}",
            f"rm -f {data_dir}/postmaster.pid",
        ]
        if wal_archive:
            steps.append(f"tar -xf {shlex.quote(wal_archive)} -C {data_dir}")
        steps.append(f"pg_ctl -D {data_dir} -o '-p {PG_VERIFY_PORT}' -w -t {int(timeout)} start")
        try:
            self._sh("start verification instance", " && ".join(steps), timeout, pod=pod)
            return self.table_count(database, port=PG_VERIFY_PORT, pod=pod)
        finally:
            stop = self.kube.exec_in_pod(
                self.namespace,
                pod,
                ["sh", "-c", f"pg_ctl -D {data_dir} -m immediate stop; rm -rf {shlex.quote(work_dir)}"],
                timeout=EXEC_TIMEOUT,
            )
            if not stop.ok:
                logger.warning("Verification instance cleanup in %s exited %s", work_dir, stop.exit_code)
