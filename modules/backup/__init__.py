"""Backup and restore of the relational store."""

from .catalog import BackupCatalog
from .manager import BackupManager
from .models import (
    BackupMetadata,
    BackupStatistics,
    BackupStatus,
    BackupType,
    Compression,
    RestoreRequest,
    RestoreResult,
    VerificationCheck,
    VerificationResult,
)
from .postgres import PostgresWorkload
from .verification import BackupVerifier

__all__ = [
    "BackupCatalog",
    "BackupManager",
    "BackupMetadata",
    "BackupStatistics",
    "BackupStatus",
    "BackupType",
    "BackupVerifier",
    "Compression",
    "PostgresWorkload",
    "RestoreRequest",
    "RestoreResult",
    "VerificationCheck",
    "VerificationResult",
]
