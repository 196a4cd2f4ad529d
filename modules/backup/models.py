"""Backup catalog records and the results of verify/restore operations."""

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from lib.utils import parse_timestamp, utc_now


class BackupType(Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class BackupStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (BackupStatus.COMPLETED, BackupStatus.FAILED)


class Compression(Enum):
    NONE = "none"
    GZIP = "gzip"


def new_backup_id(database: str, now: Optional[datetime] = None) -> str:
    """Unique without coordination: UTC timestamp plus random suffix."""
    stamp = (now or utc_now()).strftime("%Y%m%dT%H%M%SZ")
    return f"backup-{database}-{stamp}-{uuid.uuid4().hex[:12]}"


def database_from_backup_id(backup_id: str) -> str:
    """Database names cannot contain '-', so the id splits unambiguously."""
    return backup_id[len("backup-") :].rsplit("-", 2)[0]


@dataclass(frozen=True)
class BackupMetadata:
    """One catalog record. Replaced, never mutated, as the backup progresses."""

    backup_id: str
    database: str
    backup_type: BackupType
    status: BackupStatus
    created_at: str
    size_bytes: int = 0
    artifact_size_bytes: int = 0
    storage_location: str = ""
    checksum: str = ""
    compression: Compression = Compression.GZIP
    encrypted: bool = False
    wal_position: Optional[str] = None
    parent_backup_id: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def pending(
        cls,
        database: str,
        backup_type: BackupType,
        compression: Compression,
        encrypted: bool,
    ) -> "BackupMetadata":
        now = utc_now()
        return cls(
            backup_id=new_backup_id(database, now),
            database=database,
            backup_type=backup_type,
            status=BackupStatus.PENDING,
            created_at=now.isoformat(),
            compression=compression,
            encrypted=encrypted,
        )

    def advance(self, status: BackupStatus, **changes: Any) -> "BackupMetadata":
        return replace(self, status=status, **changes)

    @property
    def created_at_dt(self) -> datetime:
        return parse_timestamp(self.created_at)

    def age_days(self, now: Optional[datetime] = None) -> float:
        return ((now or utc_now()) - self.created_at_dt).total_seconds() / 86400

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["backup_type"] = self.backup_type.value
        data["status"] = self.status.value
        data["compression"] = self.compression.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupMetadata":
        return cls(
            backup_id=data["backup_id"],
            database=data["database"],
            backup_type=BackupType(data["backup_type"]),
            status=BackupStatus(data["status"]),
            created_at=data["created_at"],
            size_bytes=int(data.get("size_bytes") or 0),
            artifact_size_bytes=int(data.get("artifact_size_bytes") or 0),
            storage_location=data.get("storage_location") or "",
            checksum=data.get("checksum") or "",
            compression=Compression(data.get("compression") or Compression.NONE.value),
            encrypted=bool(data.get("encrypted", False)),
            wal_position=data.get("wal_position"),
            parent_backup_id=data.get("parent_backup_id"),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class RestoreRequest:
    backup_id: str
    pitr_target: Optional[datetime] = None
    target_database: Optional[str] = None
    skip_validation: bool = False


@dataclass(frozen=True)
class VerificationCheck:
    name: str
    passed: bool
    message: str
    critical: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VerificationResult:
    backup_id: str
    checks: List[VerificationCheck] = field(default_factory=list)
    tables_restored: Optional[int] = None

    @property
    def valid(self) -> bool:
        return all(c.passed for c in self.checks if c.critical)

    @property
    def status(self) -> str:
        return "valid" if self.valid else "invalid"

    def add(self, name: str, passed: bool, message: str, critical: bool = True) -> None:
        self.checks.append(VerificationCheck(name, passed, message, critical))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "valid": self.valid,
            "status": self.status,
            "tables_restored": self.tables_restored,
            "checks": [c.to_dict() for c in self.checks],
        }


@dataclass
class RestoreResult:
    backup_id: str
    success: bool = False
    duration_seconds: float = 0.0
    restored_size_bytes: int = 0
    tables_restored: int = 0
    pitr_applied: bool = False
    messages: List[str] = field(default_factory=list)

    def add_message(self, message: str) -> None:
        self.messages.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BackupStatistics:
    database: str
    total_backups: int = 0
    total_size_bytes: int = 0
    full_backups: int = 0
    incremental_backups: int = 0
    failed_backups: int = 0
    oldest_backup_age_days: Optional[float] = None
    newest_backup_age_days: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
