#!/usr/bin/env python3
"""
Input validation utilities for infrastructure lifecycle automation.

Every value that ends up in a Kubernetes API call, an object-storage key or a
command executed inside a workload passes through here first.

Features:
- Kubernetes resource name validation (DNS-1123 subdomain rules)
- Kubernetes namespace validation (DNS-1123 label rules)
- Context name validation
- Environment, provider and database identifier validation
- Backup identifier validation
- Filesystem path validation
"""

import logging
import os
import re
from typing import Pattern, Sequence

from lib.constants import LOGGER_NAME, VALID_PROVIDERS
from lib.exceptions import SecurityValidationError, ValidationError

logger = logging.getLogger(LOGGER_NAME)

# DNS-1123 subdomain: lowercase alphanumerics, '-' or '.', alphanumeric at both ends
K8S_NAME_PATTERN: Pattern[str] = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
K8S_NAME_MAX_LENGTH = 253

# RFC 1123 label; Kubernetes additionally requires an alphabetic first character
K8S_NAMESPACE_PATTERN: Pattern[str] = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
K8S_NAMESPACE_MAX_LENGTH = 63

# Accommodates contexts like 'admin/api-ci-aws' or 'default/api.example.com:6443/admin'
CONTEXT_NAME_PATTERN: Pattern[str] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:\-/]*[A-Za-z0-9]$|^[A-Za-z0-9]$")
CONTEXT_NAME_MAX_LENGTH = 128

# Environment labels end up in cloud resource names, keep them DNS-label safe
ENVIRONMENT_PATTERN: Pattern[str] = re.compile(r"^[a-z][a-z0-9-]{0,30}[a-z0-9]$|^[a-z]$")

# Postgres identifiers interpolated into psql commands
DATABASE_NAME_PATTERN: Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

# backup-<database>-<YYYYmmddTHHMMSSZ>-<hex>
BACKUP_ID_PATTERN: Pattern[str] = re.compile(r"^backup-[A-Za-z0-9_]{1,63}-\d{8}T\d{6}Z-[0-9a-f]{8,32}$")

# Label selectors are validated by the API server; only reject shell-hostile input
LABEL_SELECTOR_PATTERN: Pattern[str] = re.compile(r"^[A-Za-z0-9_.\-/=!, ()]+$")


class InputValidator:
    """Comprehensive input validation for lifecycle operations."""

    @staticmethod
    def validate_kubernetes_name(name: str, resource_type: str = "resource") -> None:
        """
        Validate Kubernetes resource name according to DNS-1123 subdomain rules.

        Args:
            name: The name to validate
            resource_type: Type of resource for error messages

        Raises:
            ValidationError: If name is invalid
        """
        if not name:
            raise ValidationError(f"{resource_type} name cannot be empty")

        if len(name) > K8S_NAME_MAX_LENGTH:
            raise ValidationError(
                f"{resource_type} name '{name}' exceeds maximum length of {K8S_NAME_MAX_LENGTH} characters"
            )

        if not K8S_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid {resource_type} name '{name}'. "
                f"Must consist of lowercase alphanumeric characters, '-', or '.', "
                f"must start and end with an alphanumeric character (DNS-1123 subdomain)"
            )

    @staticmethod
    def validate_kubernetes_namespace(namespace: str) -> None:
        """
        Validate Kubernetes namespace name according to DNS-1123 label rules.

        Raises:
            ValidationError: If namespace is invalid
        """
        if not namespace:
            raise ValidationError("Namespace cannot be empty")

        if len(namespace) > K8S_NAMESPACE_MAX_LENGTH:
            raise ValidationError(
                f"Namespace '{namespace}' exceeds maximum length of {K8S_NAMESPACE_MAX_LENGTH} characters"
            )

        if not K8S_NAMESPACE_PATTERN.match(namespace):
            raise ValidationError(
                f"Invalid namespace '{namespace}'. "
                f"Must consist of lower case alphanumeric characters or '-', "
                f"and must start and end with an alphanumeric character"
            )

    @staticmethod
    def validate_label_selector(selector: str) -> None:
        """Reject empty selectors and selectors containing shell metacharacters."""
        if not selector or not selector.strip():
            raise ValidationError("Label selector cannot be empty or whitespace-only")
        if not LABEL_SELECTOR_PATTERN.match(selector):
            raise ValidationError(f"Invalid label selector '{selector}'")

    @staticmethod
    def validate_context_name(context: str) -> None:
        """
        Validate Kubernetes context name.

        Raises:
            ValidationError: If context name is invalid
        """
        if not context:
            raise ValidationError("Context name cannot be empty")

        if len(context) > CONTEXT_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Context name '{context}' exceeds maximum length of {CONTEXT_NAME_MAX_LENGTH} characters"
            )

        if not CONTEXT_NAME_PATTERN.match(context):
            raise ValidationError(
                f"Invalid context name '{context}'. "
                f"Must consist of alphanumeric characters, '-', '_', '.', ':', or '/', "
                f"and must start and end with an alphanumeric character"
            )

    @staticmethod
    def _validate_choice(value: str, valid_choices: Sequence[str], field_name: str) -> None:
        if value not in valid_choices:
            raise ValidationError(f"Invalid {field_name} '{value}'. Must be one of: {', '.join(valid_choices)}")

    @staticmethod
    def validate_environment(environment: str) -> None:
        """Environment labels become part of cloud resource names and state paths."""
        if not environment:
            raise ValidationError("Environment cannot be empty")
        if not ENVIRONMENT_PATTERN.match(environment):
            raise ValidationError(
                f"Invalid environment '{environment}'. "
                f"Must be 1-32 lowercase alphanumeric characters or '-', starting with a letter"
            )

    @staticmethod
    def validate_provider(provider: str) -> None:
        InputValidator._validate_choice(provider, VALID_PROVIDERS, "provider")

    @staticmethod
    def validate_database_name(database: str) -> None:
        """
        Validate a Postgres database name before it is interpolated into a command.

        Raises:
            ValidationError: If the name is not a plain identifier
        """
        if not database:
            raise ValidationError("Database name cannot be empty")
        if not DATABASE_NAME_PATTERN.match(database):
            raise ValidationError(
                f"Invalid database name '{database}'. "
                f"Must start with a letter or underscore and contain only letters, digits and underscores"
            )

    @staticmethod
    def validate_backup_id(backup_id: str) -> None:
        if not backup_id:
            raise ValidationError("Backup ID cannot be empty")
        if not BACKUP_ID_PATTERN.match(backup_id):
            raise ValidationError(f"Invalid backup ID '{backup_id}'")

    @staticmethod
    def validate_log_format(log_format: str) -> None:
        InputValidator._validate_choice(log_format, ["text", "json"], "log format")

    @staticmethod
    def validate_safe_filesystem_path(path: str, field_name: str) -> None:
        """
        Validate that a path is safe for filesystem operations.

        Args:
            path: The path to validate
            field_name: Name of the field for error messages

        Raises:
            SecurityValidationError: If path contains unsafe characters or patterns
            ValidationError: If path is empty
        """
        if not path:
            raise ValidationError(f"{field_name} path cannot be empty")

        if ".." in path.split("/"):
            raise SecurityValidationError(
                f"SECURITY: Path traversal attempt detected in {field_name} path '{path}'. "
                f"The '..' sequence is not allowed as a path component."
            )

        unsafe_chars = ["~", "$", "{", "}", "|", "&", ";", "<", ">", "`"]
        if any(char in path for char in unsafe_chars):
            raise SecurityValidationError(
                f"SECURITY: Invalid characters in {field_name} path '{path}'. "
                f"Disallowed patterns: {', '.join(unsafe_chars)}."
            )

        if path.startswith("/"):
            # Resolve symlinks; for new files the parent must already exist
            if os.path.exists(path):
                resolved_path = os.path.realpath(path)
            else:
                parent = os.path.dirname(path)
                if parent and os.path.exists(parent):
                    resolved_path = os.path.join(os.path.realpath(parent), os.path.basename(path))
                else:
                    raise SecurityValidationError(
                        f"SECURITY: Absolute path '{path}' for {field_name} has a non-existent parent directory."
                    )

            safe_prefixes = ["/tmp/", "/var/"]  # nosec B108 - path validation, not temp file usage
            cwd = os.getcwd()
            if cwd:
                safe_prefixes.append(os.path.realpath(cwd) + "/")
            home = os.path.expanduser("~")
            if home and home != "~":
                safe_prefixes.append(os.path.realpath(home) + "/")

            if not any(resolved_path.startswith(prefix) for prefix in safe_prefixes):
                raise SecurityValidationError(
                    f"SECURITY: Absolute path '{path}' is not allowed for {field_name}. "
                    f"Use relative paths or paths within /tmp, /var, workspace root, or home directory."
                )

    @staticmethod
    def validate_all_cli_args(args: object) -> None:
        """
        Validate parsed CLI arguments.

        Raises:
            ValidationError: If any argument validation fails
        """
        if getattr(args, "context", None):
            InputValidator.validate_context_name(args.context)

        if getattr(args, "namespace", None):
            InputValidator.validate_kubernetes_namespace(args.namespace)

        if getattr(args, "environment", None):
            InputValidator.validate_environment(args.environment)

        if getattr(args, "provider", None):
            InputValidator.validate_provider(args.provider)

        if getattr(args, "database", None):
            InputValidator.validate_database_name(args.database)

        if getattr(args, "backup_id", None):
            InputValidator.validate_backup_id(args.backup_id)

        if getattr(args, "log_format", None):
            InputValidator.validate_log_format(args.log_format)

        for namespace in getattr(args, "additional_namespaces", None) or []:
            InputValidator.validate_kubernetes_namespace(namespace)

        for field_name in ("config", "state_dir", "output"):
            value = getattr(args, field_name, None)
            if value:
                InputValidator.validate_safe_filesystem_path(value, field_name.replace("_", "-"))
