"""Category validators for infrastructure health validation."""

from .base_validator import BaseValidator, Check
from .cluster import ClusterValidator
from .databases import DatabaseValidator
from .models import (
    CATEGORY_ORDER,
    SLOW_CATEGORIES,
    Category,
    CategoryResult,
    CheckOutcome,
    CheckRecord,
    CheckSeverity,
    CheckStatus,
    ValidationReport,
)
from .network import NetworkValidator
from .prerequisites import PrerequisitesValidator
from .reporter import ValidationReporter, render_json, render_text
from .resources import ResourceValidator
from .security import SecurityValidator
from .services import ServiceValidator

VALIDATORS = {
    Category.PREREQUISITES: PrerequisitesValidator,
    Category.CLUSTER: ClusterValidator,
    Category.SERVICES: ServiceValidator,
    Category.DATABASES: DatabaseValidator,
    Category.SECURITY: SecurityValidator,
    Category.NETWORK: NetworkValidator,
    Category.RESOURCES: ResourceValidator,
}

__all__ = [
    "BaseValidator",
    "Check",
    "CATEGORY_ORDER",
    "SLOW_CATEGORIES",
    "Category",
    "CategoryResult",
    "CheckOutcome",
    "CheckRecord",
    "CheckSeverity",
    "CheckStatus",
    "ValidationReport",
    "ValidationReporter",
    "render_json",
    "render_text",
    "PrerequisitesValidator",
    "ClusterValidator",
    "ServiceValidator",
    "DatabaseValidator",
    "SecurityValidator",
    "NetworkValidator",
    "ResourceValidator",
    "VALIDATORS",
]
