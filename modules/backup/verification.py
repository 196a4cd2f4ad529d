"""Read-only integrity verification of stored backups."""

import logging
from typing import Optional

from lib.artifact import decrypt, is_encrypted, is_gzip, sha256_hex
from lib.constants import LOGGER_NAME
from lib.exceptions import IntegrityError
from lib.object_storage import ObjectStorageClient
from lib.utils import utc_now

from .catalog import BackupCatalog
from .models import BackupMetadata, BackupStatus, Compression, VerificationResult

logger = logging.getLogger(LOGGER_NAME)


class BackupVerifier:
    """Runs the artifact checks for one backup. Never writes to the catalog."""

    def __init__(
        self,
        storage: ObjectStorageClient,
        catalog: BackupCatalog,
        encryption_key: Optional[bytes] = None,
    ) -> None:
        self.storage = storage
        self.catalog = catalog
        self.encryption_key = encryption_key

    def verify(self, backup_id: str) -> VerificationResult:
        result = VerificationResult(backup_id=backup_id)
        metadata = self.catalog.get(backup_id)
        if metadata is None:
            result.add("exists", False, "no catalog record for this backup")
            return result
        if metadata.status is not BackupStatus.COMPLETED:
            result.add("exists", False, f"backup status is {metadata.status.value}, not completed")
            return result

        key = self.storage.key_from_uri(metadata.storage_location)
        stored = self.storage.head(key)
        if stored is None:
            result.add("exists", False, f"artifact missing at {metadata.storage_location}")
            return result
        result.add("exists", True, f"artifact present at {metadata.storage_location}")

        result.add(
            "size",
            stored.size > 0,
            f"{stored.size} bytes stored (catalog: {metadata.artifact_size_bytes})",
        )
        result.add("checksum-present", bool(metadata.checksum), "sha256 recorded" if metadata.checksum else "no checksum")

        data = self.storage.get(key)
        actual = sha256_hex(data)
        if not metadata.checksum:
            result.add("checksum-match", False, "nothing to compare against")
        elif actual == metadata.checksum:
            result.add("checksum-match", True, f"sha256 {actual[:16]}... matches")
        else:
            result.add("checksum-match", False, f"sha256 mismatch: stored {metadata.checksum[:16]}..., got {actual[:16]}...")

        encrypted = is_encrypted(data)
        result.add(
            "encryption",
            encrypted == metadata.encrypted,
            f"catalog says encrypted={metadata.encrypted}, artifact header says encrypted={encrypted}",
        )

        self._check_compression(result, metadata, data)

        created = metadata.created_at_dt
        in_past = created <= utc_now()
        result.add(
            "timestamp",
            in_past,
            f"created at {created.isoformat()}" if in_past else f"created_at {created.isoformat()} is in the future",
        )

        result.add(
            "pitr-capable",
            metadata.wal_position is not None,
            f"WAL position {metadata.wal_position}" if metadata.wal_position else "no WAL position recorded",
            critical=False,
        )

        logger.info("Backup %s verification: %s", backup_id, result.status)
        return result

    def _check_compression(self, result: VerificationResult, metadata: BackupMetadata, data: bytes) -> None:
        payload = data
        if is_encrypted(data):
            if self.encryption_key is None:
                result.add("compression", False, "artifact is encrypted; the encryption key is needed to inspect it")
                return
            try:
                payload = decrypt(data, self.encryption_key)
            except IntegrityError as e:
                result.add("compression", False, str(e))
                return
        compressed = is_gzip(payload)
        expected = metadata.compression is Compression.GZIP
        result.add(
            "compression",
            compressed == expected,
            f"catalog says {metadata.compression.value}, artifact is {'gzip' if compressed else 'uncompressed'}",
        )
