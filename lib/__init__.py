"""
Library package for the infrastructure lifecycle engine.
"""

# Import version from lightweight module (avoids importing heavy deps at build time)
from ._version import __version__, __version_date__

from .exceptions import (
    ConfigurationError,
    FatalError,
    LifecycleError,
    TransientError,
    ValidationError,
)
from .kube_client import KubeClient
from .utils import (
    CancellationToken,
    EnvironmentState,
    confirm_phrase,
    format_bytes,
    format_duration,
    setup_logging,
)

__all__ = [
    "__version__",
    "__version_date__",
    "KubeClient",
    "LifecycleError",
    "TransientError",
    "FatalError",
    "ValidationError",
    "ConfigurationError",
    "CancellationToken",
    "EnvironmentState",
    "setup_logging",
    "format_bytes",
    "format_duration",
    "confirm_phrase",
]
