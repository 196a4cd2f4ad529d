"""
Backup and restore of the TimescaleDB store.

Artifacts live at ``<prefix>/<database>/<backup_id>/artifact`` and the
catalog at ``<prefix>/catalog/``. A catalog record only becomes
``completed`` after the uploaded artifact has been read back and its checksum
matched.
"""

import logging
import time
from datetime import timezone
from typing import List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError
from kubernetes.client.rest import ApiException

from lib.artifact import decode_artifact, encode_artifact, sha256_hex
from lib.constants import ARTIFACT_NAME, BACKUP_RETENTION_DAYS, LOGGER_NAME, PG_SCRATCH_DIR
from lib.exceptions import (
    BackupFailed,
    ConfigurationError,
    IntegrityError,
    LifecycleError,
    OperationCancelled,
    PITRUnavailable,
    RestoreFailed,
    ValidationError,
)
from lib.kube_client import KubeClient
from lib.object_storage import ObjectStorageClient
from lib.utils import CancellationToken, format_bytes, format_duration, utc_now, utc_timestamp
from lib.validation import InputValidator

from .catalog import BackupCatalog
from .models import (
    BackupMetadata,
    BackupStatistics,
    BackupStatus,
    BackupType,
    Compression,
    RestoreRequest,
    RestoreResult,
    VerificationResult,
)
from .postgres import PostgresWorkload, scaled_timeout
from .verification import BackupVerifier

logger = logging.getLogger(LOGGER_NAME)

# Failures from these layers end a backup/restore with a typed error
REMOTE_ERRORS = (LifecycleError, ApiException, ClientError, BotoCoreError, OSError)


class BackupManager:
    """Creates, lists, verifies and restores backups of one database workload."""

    def __init__(
        self,
        kube: KubeClient,
        storage: ObjectStorageClient,
        namespace: str,
        prefix: str,
        compression: bool = True,
        encryption_key: Optional[bytes] = None,
        postgres: Optional[PostgresWorkload] = None,
    ) -> None:
        self.kube = kube
        self.storage = storage
        self.namespace = namespace
        self.prefix = prefix.strip("/")
        self.compression = Compression.GZIP if compression else Compression.NONE
        self.encryption_key = encryption_key
        self.catalog = BackupCatalog(storage, self.prefix)
        self.verifier = BackupVerifier(storage, self.catalog, encryption_key)
        self.postgres = postgres or PostgresWorkload(kube, namespace)

    def artifact_key(self, database: str, backup_id: str) -> str:
        return f"{self.prefix}/{database}/{backup_id}/{ARTIFACT_NAME}"

    # =============================
    # Backup
    # =============================
    def create_backup(
        self,
        database: str,
        backup_type: BackupType = BackupType.FULL,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BackupMetadata:
        """
        Snapshot ``database`` and store it.

        Raises:
            BackupFailed: If any step fails; the catalog record is marked failed
            OperationCancelled: If cancellation was requested between steps
        """
        InputValidator.validate_database_name(database)
        metadata = BackupMetadata.pending(database, backup_type, self.compression, self.encryption_key is not None)
        logger.info("Starting %s backup %s of %s", backup_type.value, metadata.backup_id, database)

        key = self.artifact_key(database, metadata.backup_id)
        uploaded = False
        start = time.monotonic()
        try:
            self.catalog.write(metadata)
            parent_id = None
            if backup_type is BackupType.INCREMENTAL:
                parent = self.latest_full_backup(database)
                if parent is None:
                    raise BackupFailed(f"no completed full backup of {database} to base an incremental on")
                parent_id = parent.backup_id

            self._checkpoint(cancel_token, "database dump")
            database_size = self.postgres.database_size(database)
            timeout = scaled_timeout(database_size)
            metadata = metadata.advance(BackupStatus.IN_PROGRESS, parent_backup_id=parent_id)
            self.catalog.write(metadata)

            wal_position = self.postgres.current_wal_lsn(database)
            if backup_type is BackupType.FULL:
                raw = self.postgres.dump_base_backup(timeout)
                size_bytes = database_size
            else:
                raw = self.postgres.dump_wal(database, timeout)
                size_bytes = len(raw)
            logger.info("Dumped %s (%s of data)", database, format_bytes(size_bytes))

            artifact = encode_artifact(raw, self.compression is Compression.GZIP, self.encryption_key)
            del raw
            checksum = sha256_hex(artifact)

            self._checkpoint(cancel_token, "upload")
            uploaded = True
            location = self.storage.put(
                key,
                artifact,
                {
                    "backup-id": metadata.backup_id,
                    "database": database,
                    "checksum-sha256": checksum,
                    "wal-position": wal_position or "",
                },
            )

            if sha256_hex(self.storage.get(key)) != checksum:
                raise IntegrityError(f"read-back checksum of {location} does not match the uploaded artifact")

            metadata = metadata.advance(
                BackupStatus.COMPLETED,
                size_bytes=size_bytes,
                artifact_size_bytes=len(artifact),
                storage_location=location,
                checksum=checksum,
                wal_position=wal_position,
                completed_at=utc_timestamp(),
            )
            self.catalog.write(metadata)
        except OperationCancelled as e:
            self._mark_failed(metadata, key if uploaded else None, str(e))
            raise
        except REMOTE_ERRORS as e:
            self._mark_failed(metadata, key if uploaded else None, str(e))
            if isinstance(e, BackupFailed):
                e.backup_id = metadata.backup_id
                raise
            raise BackupFailed(f"Backup {metadata.backup_id} of {database} failed: {e}", metadata.backup_id) from e
        except Exception as e:
            self._mark_failed(metadata, key if uploaded else None, f"unexpected {type(e).__name__}: {e}")
            raise

        logger.info(
            "✓ Backup %s completed in %s (%s stored)",
            metadata.backup_id,
            format_duration(time.monotonic() - start),
            format_bytes(metadata.artifact_size_bytes),
        )
        return metadata

    @staticmethod
    def _checkpoint(cancel_token: Optional[CancellationToken], step: str) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(step)

    def _mark_failed(self, metadata: BackupMetadata, uploaded_key: Optional[str], error: str) -> None:
        if uploaded_key is not None:
            try:
                self.storage.delete(uploaded_key)
            except (ClientError, BotoCoreError) as e:
                logger.error("Could not delete partial artifact %s: %s", uploaded_key, e)
        try:
            self.catalog.write(metadata.advance(BackupStatus.FAILED, error=error, completed_at=utc_timestamp()))
        except (ClientError, BotoCoreError, LifecycleError) as e:
            logger.error(
                "Could not record backup %s as failed, its catalog record stays %s: %s",
                metadata.backup_id,
                metadata.status.value,
                e,
            )
        logger.error("✗ Backup %s failed: %s", metadata.backup_id, error)

    # =============================
    # Catalog queries
    # =============================
    def list_backups(self, database: str) -> List[BackupMetadata]:
        """Every catalog record for ``database``, newest first."""
        return self.catalog.list(database)

    def get_backup(self, backup_id: str) -> Optional[BackupMetadata]:
        return self.catalog.get(backup_id)

    def latest_full_backup(self, database: str) -> Optional[BackupMetadata]:
        for metadata in self.list_backups(database):
            if metadata.backup_type is BackupType.FULL and metadata.status is BackupStatus.COMPLETED:
                return metadata
        return None

    def backup_statistics(self, database: str) -> BackupStatistics:
        records = self.list_backups(database)
        completed = [m for m in records if m.status is BackupStatus.COMPLETED]
        now = utc_now()
        return BackupStatistics(
            database=database,
            total_backups=len(completed),
            total_size_bytes=sum(m.artifact_size_bytes for m in completed),
            full_backups=sum(1 for m in completed if m.backup_type is BackupType.FULL),
            incremental_backups=sum(1 for m in completed if m.backup_type is BackupType.INCREMENTAL),
            failed_backups=sum(1 for m in records if m.status is BackupStatus.FAILED),
            oldest_backup_age_days=round(completed[-1].age_days(now), 2) if completed else None,
            newest_backup_age_days=round(completed[0].age_days(now), 2) if completed else None,
        )

    # =============================
    # Verification
    # =============================
    def verify_backup(self, backup_id: str, test_restore: bool = False) -> VerificationResult:
        """Integrity checks, plus an optional restore into a throwaway instance."""
        InputValidator.validate_backup_id(backup_id)
        result = self.verifier.verify(backup_id)
        if test_restore:
            if not result.valid:
                result.add("test-restore", False, "skipped: artifact failed verification")
                return result
            metadata = self.catalog.get(backup_id)
            try:
                tables = self._test_restore(metadata)
            except REMOTE_ERRORS as e:
                result.add("test-restore", False, f"test restore failed: {e}")
            else:
                result.tables_restored = tables
                result.add("test-restore", tables > 0, f"{tables} tables restored in a scratch instance")
        return result

    def verify_all_backups(self, database: str) -> List[VerificationResult]:
        return [
            self.verify_backup(m.backup_id) for m in self.list_backups(database) if m.status is BackupStatus.COMPLETED
        ]

    def _test_restore(self, metadata: BackupMetadata) -> int:
        chain = self._restore_chain(metadata)
        payloads = [self._download(m) for m in chain]
        work_dir = f"{PG_SCRATCH_DIR}/verify-{metadata.backup_id}"
        pod = self.postgres.pod()
        timeout = scaled_timeout(sum(len(p) for p in payloads))
        paths = self._upload_chain(chain, payloads, work_dir, timeout, pod)
        return self.postgres.scratch_instance_table_count(
            paths[0],
            paths[1] if len(paths) > 1 else None,
            metadata.database,
            work_dir,
            timeout,
            pod=pod,
        )

    # =============================
    # Restore
    # =============================
    def restore(self, request: RestoreRequest, cancel_token: Optional[CancellationToken] = None) -> RestoreResult:
        """
        Load a backup into the live database, optionally replaying WAL up to
        ``request.pitr_target``.

        Raises:
            ValidationError: If the request is malformed or the PITR target precedes the backup
            PITRUnavailable: If a PITR target is requested but no WAL position was captured
            RestoreFailed: On any failure once the restore has started
        """
        InputValidator.validate_backup_id(request.backup_id)
        start = time.monotonic()
        result = RestoreResult(backup_id=request.backup_id)

        metadata = self.catalog.get(request.backup_id)
        if metadata is None:
            raise RestoreFailed(f"Backup {request.backup_id} not found in catalog", request.backup_id)
        if metadata.status is not BackupStatus.COMPLETED:
            raise RestoreFailed(
                f"Backup {request.backup_id} is {metadata.status.value}, only completed backups can be restored",
                request.backup_id,
            )
        target_db = request.target_database or metadata.database
        InputValidator.validate_database_name(target_db)

        pitr_target = None
        if request.pitr_target is not None:
            pitr_target = request.pitr_target
            if pitr_target.tzinfo is None:
                pitr_target = pitr_target.replace(tzinfo=timezone.utc)
            if pitr_target < metadata.created_at_dt:
                raise ValidationError(
                    f"PITR target {pitr_target.isoformat()} is before backup creation {metadata.created_at}"
                )
            if not metadata.wal_position:
                raise PITRUnavailable(
                    f"Backup {metadata.backup_id} has no WAL position; point-in-time recovery is not possible"
                )

        result.add_message(f"Starting restore of backup: {metadata.backup_id}")
        step = "download"
        destructive_started = False
        try:
            chain = self._restore_chain(metadata)
            payloads = [self._download(m) for m in chain]
            result.add_message(f"Downloaded and verified {len(chain)} artifact(s)")

            self._checkpoint(cancel_token, "upload to database pod")
            step = "upload"
            pod = self.postgres.pod()
            timeout = scaled_timeout(sum(len(p) for p in payloads))
            work_dir = f"{PG_SCRATCH_DIR}/restore-{metadata.backup_id}"
            paths = self._upload_chain(chain, payloads, work_dir, timeout, pod)
            result.add_message(f"Backup uploaded to pod {pod}")

            self._checkpoint(cancel_token, "replace data directory")
            step = "replace data directory"
            destructive_started = True
            self.postgres.replace_data_dir(
                paths[0],
                paths[1] if len(paths) > 1 else None,
                pitr_target,
                timeout,
                pod=pod,
            )
            result.add_message("Database restored from backup")
            if pitr_target is not None:
                result.pitr_applied = True
                result.add_message(f"Applied PITR to timestamp: {pitr_target.isoformat()}")

            step = "post-restore checks"
            if not request.skip_validation:
                result.tables_restored = self.postgres.table_count(target_db, pod=pod)
                result.add_message(f"Verified: {result.tables_restored} tables restored")
            result.restored_size_bytes = self.postgres.database_size(target_db)
            self.postgres.remove([work_dir], pod=pod)
        except OperationCancelled:
            raise
        except (RestoreFailed, PITRUnavailable):
            raise
        except REMOTE_ERRORS as e:
            state = (
                "the database may be left stopped or partially restored"
                if destructive_started
                else "the live database was not modified"
            )
            raise RestoreFailed(
                f"Restore of {metadata.backup_id} failed during {step}: {e}. "
                f"No further destructive steps were taken; {state}.",
                metadata.backup_id,
            ) from e

        result.success = True
        result.duration_seconds = round(time.monotonic() - start, 3)
        result.add_message("Restore completed successfully")
        logger.info("✓ Restore of %s completed in %s", metadata.backup_id, format_duration(result.duration_seconds))
        return result

    def _restore_chain(self, metadata: BackupMetadata) -> List[BackupMetadata]:
        """Backups to load, base first: [full] or [parent full, incremental]."""
        if metadata.backup_type is BackupType.FULL:
            return [metadata]
        if not metadata.parent_backup_id:
            raise RestoreFailed(f"Incremental backup {metadata.backup_id} has no parent full backup", metadata.backup_id)
        parent = self.catalog.get(metadata.parent_backup_id)
        if parent is None or parent.status is not BackupStatus.COMPLETED:
            raise RestoreFailed(
                f"Parent backup {metadata.parent_backup_id} of {metadata.backup_id} is not available",
                metadata.backup_id,
            )
        return [parent, metadata]

    def _download(self, metadata: BackupMetadata) -> bytes:
        """Fetch, checksum and unframe one artifact."""
        key = self.storage.key_from_uri(metadata.storage_location)
        try:
            stored = self.storage.get(key)
        except KeyError as e:
            raise RestoreFailed(f"Artifact {metadata.storage_location} is missing", metadata.backup_id) from e
        try:
            actual = sha256_hex(stored)
            if actual != metadata.checksum:
                raise IntegrityError(
                    f"Checksum mismatch for {metadata.backup_id}: expected {metadata.checksum}, got {actual}"
                )
            return decode_artifact(stored, self.encryption_key)
        except (IntegrityError, ConfigurationError) as e:
            raise RestoreFailed(f"Backup {metadata.backup_id} cannot be restored: {e}", metadata.backup_id) from e

    def _upload_chain(
        self,
        chain: List[BackupMetadata],
        payloads: List[bytes],
        work_dir: str,
        timeout: float,
        pod: str,
    ) -> List[str]:
        paths = []
        for metadata, payload in zip(chain, payloads):
            suffix = "base.tar" if metadata.backup_type is BackupType.FULL else "wal.tar"
            path = f"{work_dir}/{metadata.backup_id}.{suffix}"
            self.postgres.upload(payload, path, timeout, pod=pod)
            paths.append(path)
        return paths

    # =============================
    # Retention
    # =============================
    def cleanup_old_backups(
        self,
        database: str,
        retention_days: int = BACKUP_RETENTION_DAYS,
        dry_run: bool = False,
    ) -> List[str]:
        """
        Delete artifacts of completed backups older than ``retention_days``.

        Full backups still referenced by a retained incremental are kept.
        Catalog records stay in place. Returns the ids whose artifacts were removed.
        """
        records = self.list_backups(database)
        now = utc_now()
        expired, retained = _split_by_age(records, retention_days, now)
        still_needed = {m.parent_backup_id for m in retained if m.parent_backup_id}

        removed = []
        for metadata in expired:
            if metadata.backup_id in still_needed:
                logger.info("Keeping %s: parent of a retained incremental backup", metadata.backup_id)
                continue
            if dry_run:
                logger.info("[DRY-RUN] Would delete artifact of %s", metadata.backup_id)
            else:
                self.storage.delete(self.storage.key_from_uri(metadata.storage_location))
                logger.info("Deleted artifact of %s (%.1f days old)", metadata.backup_id, metadata.age_days(now))
            removed.append(metadata.backup_id)
        return removed


def _split_by_age(
    records: List[BackupMetadata], retention_days: int, now
) -> Tuple[List[BackupMetadata], List[BackupMetadata]]:
    expired, retained = [], []
    for metadata in records:
        if metadata.status is not BackupStatus.COMPLETED:
            continue
        (expired if metadata.age_days(now) > retention_days else retained).append(metadata)
    return expired, retained
