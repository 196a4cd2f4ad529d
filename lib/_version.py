"""Version information for the infrastructure lifecycle engine."""

__version__ = "1.4.0"
__version_date__ = "2026-10-12"
