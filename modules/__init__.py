"""
Module package initialization.
"""

from .backup import BackupManager, RestoreRequest
from .teardown import TeardownOrchestrator, TeardownPlan, TeardownScope, TeardownState
from .validation_engine import ValidationEngine

__all__ = [
    "ValidationEngine",
    "BackupManager",
    "RestoreRequest",
    "TeardownOrchestrator",
    "TeardownPlan",
    "TeardownScope",
    "TeardownState",
]
