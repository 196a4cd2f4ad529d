"""
Custom exceptions for infrastructure lifecycle automation.
"""


class LifecycleError(Exception):
    """Base class for all lifecycle errors."""


class TransientError(LifecycleError):
    """
    Error that might be resolved by retrying.
    Examples: Network timeouts, 503 Service Unavailable.
    """


class TransientRemoteError(TransientError):
    """Remote call failed while the remote side is still believed reachable."""


class FatalError(LifecycleError):
    """
    Error that cannot be resolved by retrying.
    Examples: Invalid configuration, missing permissions, 404 Not Found (when expected).
    """


class ValidationError(FatalError):
    """Input validation failure."""


class SecurityValidationError(ValidationError):
    """Input rejected because it is unsafe (path traversal, shell metacharacters)."""


class ConfigurationError(FatalError):
    """Invalid configuration or missing prerequisite."""


class IntegrityError(FatalError):
    """Checksum mismatch or corrupted backup artifact."""


class BackupFailed(FatalError):
    """Backup could not be completed; the catalog record is marked failed."""

    def __init__(self, message: str, backup_id: str = ""):
        super().__init__(message)
        self.backup_id = backup_id


class RestoreFailed(FatalError):
    """Restore aborted. Non-retryable."""

    def __init__(self, message: str, backup_id: str = ""):
        super().__init__(message)
        self.backup_id = backup_id


class PITRUnavailable(FatalError):
    """Point-in-time recovery requested but the backup has no WAL position."""


class ConfirmationDeclined(LifecycleError):
    """User declined a confirmation gate. Normal early exit, not a failure."""


class OperationCancelled(LifecycleError):
    """Cancellation was requested between orchestrator steps."""


class PartialFailure(LifecycleError):
    """
    A best-effort step did not fully succeed but the orchestrator proceeded.
    Reported as a warning, never upgraded to a hard failure.
    """

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.detail = message


class WorkloadNotFound(FatalError):
    """No running pod matches the selector a command was meant to run in."""


class RemoteCommandError(FatalError):
    """A command executed inside a workload exited non-zero or returned unusable output."""

    def __init__(self, description: str, exit_code: int, stderr: str = ""):
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no error output"
        super().__init__(f"{description} failed with exit code {exit_code}: {detail}")
        self.exit_code = exit_code
        self.stderr = stderr
