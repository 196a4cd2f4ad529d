"""
Configuration loading for lifecycle operations.

Precedence: built-in defaults < YAML file < INFRA_LIFECYCLE_* environment
variables < explicit CLI overrides.
"""

import base64
import binascii
import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import yaml

from lib.constants import (
    BACKUP_BUCKET_DEFAULT,
    BACKUP_PREFIX_DEFAULT,
    BACKUP_REGION_DEFAULT,
    BACKUP_RETENTION_DAYS,
    CHECK_TIMEOUT,
    DEFAULT_DATABASE,
    DEFAULT_ENVIRONMENT,
    DEFAULT_NAMESPACE,
    DEFAULT_STATE_DIR,
    DRAIN_GRACE_PERIOD,
    ENCRYPTION_KEY_ENV_VAR,
    KUBE_REQUEST_TIMEOUT,
    LOGGER_NAME,
    VALIDATION_MAX_WORKERS,
)
from lib.exceptions import ConfigurationError
from lib.validation import InputValidator, ValidationError

logger = logging.getLogger(LOGGER_NAME)

ENV_PREFIX = "INFRA_LIFECYCLE_"


@dataclass
class LifecycleConfig:
    """Resolved settings shared by the three orchestrators."""

    namespace: str = DEFAULT_NAMESPACE
    environment: str = DEFAULT_ENVIRONMENT
    provider: str = "k8s"
    context: Optional[str] = None
    database: str = DEFAULT_DATABASE
    request_timeout: int = KUBE_REQUEST_TIMEOUT
    check_timeout: int = CHECK_TIMEOUT
    max_workers: int = VALIDATION_MAX_WORKERS
    backup_bucket: str = BACKUP_BUCKET_DEFAULT
    backup_prefix: str = BACKUP_PREFIX_DEFAULT
    backup_region: str = BACKUP_REGION_DEFAULT
    backup_endpoint_url: Optional[str] = None
    compression: bool = True
    encryption: bool = True
    retention_days: int = BACKUP_RETENTION_DAYS
    state_dir: str = DEFAULT_STATE_DIR
    drain_grace_period: int = DRAIN_GRACE_PERIOD

    def validate(self) -> None:
        """Raise ConfigurationError if any setting is unusable."""
        try:
            InputValidator.validate_kubernetes_namespace(self.namespace)
            InputValidator.validate_environment(self.environment)
            InputValidator.validate_provider(self.provider)
            InputValidator.validate_database_name(self.database)
            if self.context:
                InputValidator.validate_context_name(self.context)
            InputValidator.validate_safe_filesystem_path(self.state_dir, "state-dir")
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

        for name in ("request_timeout", "check_timeout", "max_workers", "retention_days"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.drain_grace_period < 0:
            raise ConfigurationError("drain_grace_period cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(value: str, target_type: Any) -> Any:
    if target_type is bool:
        return value.strip().lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    return value


def _field_types() -> Dict[str, Any]:
    types: Dict[str, Any] = {}
    for f in fields(LifecycleConfig):
        default = f.default
        types[f.name] = type(default) if default is not None else str
    return types


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> LifecycleConfig:
    """
    Build a LifecycleConfig from a YAML file, the environment and overrides.

    Args:
        path: Optional YAML file with top-level keys matching LifecycleConfig fields
        overrides: Values from the command line; None entries are ignored
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigurationError: If the file is unreadable or a value is invalid
    """
    environ = os.environ if environ is None else environ
    types = _field_types()
    values: Dict[str, Any] = {}

    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        unknown = sorted(set(data) - set(types))
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        values.update({k: v for k, v in data.items() if k in types})

    for name, target_type in types.items():
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            try:
                values[name] = _coerce(raw, target_type)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw}") from e

    for name, value in (overrides or {}).items():
        if value is not None and name in types:
            values[name] = value

    cfg = LifecycleConfig(**values)
    cfg.validate()
    return cfg


def load_encryption_key(environ: Optional[Dict[str, str]] = None) -> Optional[bytes]:
    """
    Read the backup encryption key (base64, 32 bytes) from the environment.

    Returns:
        Raw key bytes, or None when no key is configured

    Raises:
        ConfigurationError: If the key is present but malformed
    """
    environ = os.environ if environ is None else environ
    raw = environ.get(ENCRYPTION_KEY_ENV_VAR)
    if not raw:
        return None
    try:
        key = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"{ENCRYPTION_KEY_ENV_VAR} is not valid base64") from e
    if len(key) != 32:
        raise ConfigurationError(f"{ENCRYPTION_KEY_ENV_VAR} must decode to 32 bytes, got {len(key)}")
    return key
