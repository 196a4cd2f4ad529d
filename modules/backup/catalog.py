"""
Append-only backup catalog stored next to the artifacts.

One JSON object per backup at ``<prefix>/catalog/<database>/<backup_id>.json``.
A record may be rewritten while the backup is in flight; once it reaches a
terminal status it is never written again.
"""

import json
import logging
from typing import List, Optional

from lib.constants import CATALOG_PREFIX, LOGGER_NAME
from lib.exceptions import IntegrityError
from lib.object_storage import ObjectStorageClient
from lib.validation import InputValidator

from .models import BackupMetadata, database_from_backup_id

logger = logging.getLogger(LOGGER_NAME)


class BackupCatalog:
    def __init__(self, storage: ObjectStorageClient, prefix: str) -> None:
        self.storage = storage
        self.prefix = prefix.strip("/")

    def _database_prefix(self, database: str) -> str:
        return f"{self.prefix}/{CATALOG_PREFIX}/{database}/"

    def record_key(self, backup_id: str) -> str:
        return f"{self._database_prefix(database_from_backup_id(backup_id))}{backup_id}.json"

    def get(self, backup_id: str) -> Optional[BackupMetadata]:
        InputValidator.validate_backup_id(backup_id)
        try:
            raw = self.storage.get(self.record_key(backup_id))
        except KeyError:
            return None
        return BackupMetadata.from_dict(json.loads(raw.decode("utf-8")))

    def write(self, metadata: BackupMetadata) -> None:
        """
        Store ``metadata``.

        Raises:
            IntegrityError: If the stored record is already terminal
        """
        existing = self.get(metadata.backup_id)
        if existing is not None and existing.status.terminal:
            raise IntegrityError(
                f"Catalog record {metadata.backup_id} is {existing.status.value} and cannot be rewritten"
            )
        body = json.dumps(metadata.to_dict(), indent=2, sort_keys=True).encode("utf-8")
        self.storage.put(
            self.record_key(metadata.backup_id),
            body,
            {"backup-id": metadata.backup_id, "status": metadata.status.value},
        )
        logger.debug("Catalog %s -> %s", metadata.backup_id, metadata.status.value)

    def list(self, database: str) -> List[BackupMetadata]:
        """Every record for ``database``, newest first."""
        InputValidator.validate_database_name(database)
        records = []
        for key in self.storage.list(self._database_prefix(database)):
            if not key.endswith(".json"):
                continue
            try:
                records.append(BackupMetadata.from_dict(json.loads(self.storage.get(key).decode("utf-8"))))
            except (ValueError, KeyError) as e:
                logger.warning("Skipping unreadable catalog record %s: %s", key, e)
        records.sort(key=lambda m: m.created_at_dt, reverse=True)
        return records
