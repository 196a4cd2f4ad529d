"""
Common utilities for infrastructure lifecycle automation.
"""

import json
import logging
import os
import shutil
import stat
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from lib.constants import LOGGER_NAME
from lib.exceptions import OperationCancelled


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return an ISO-8601 timestamp in UTC."""
    return utc_now().isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class CancellationToken:
    """Cooperative cancellation signal checked between orchestrator steps."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, step: str) -> None:
        """Raise OperationCancelled if cancellation was requested before ``step``."""
        if self._event.is_set():
            raise OperationCancelled(f"{step} not started: {self.reason}")


class EnvironmentState:
    """Per-environment local state (last run outcomes, cached credentials).

    Everything lives under ``<state_dir>/<environment>/`` so teardown can remove
    it as a unit.
    """

    STATE_FILE_NAME = "lifecycle-state.json"

    def __init__(self, state_dir: str, environment: str):
        self.state_dir = state_dir
        self.environment = environment
        self.env_dir = os.path.join(state_dir, environment)
        self.state_file = os.path.join(self.env_dir, self.STATE_FILE_NAME)
        self.state = self._load_state()

    def _load_state(self) -> Dict[str, Any]:
        if os.path.exists(self.state_file):
            try:
                with open(self.state_file, "r", encoding="utf-8") as f:
                    return json.load(f)
            except json.JSONDecodeError as e:
                logging.getLogger(LOGGER_NAME).warning(
                    "Corrupted state file %s: %s, starting fresh", self.state_file, e
                )
            except OSError as e:
                logging.getLogger(LOGGER_NAME).error("Failed to read state file %s: %s", self.state_file, e)
        return self._new_state()

    def _new_state(self) -> Dict[str, Any]:
        return {
            "version": "1.0",
            "environment": self.environment,
            "created_at": utc_timestamp(),
            "runs": {},
            "last_updated": utc_timestamp(),
        }

    def _write_state(self, state: Dict[str, Any]) -> None:
        os.makedirs(self.env_dir, exist_ok=True)
        # Owner read/write only: the directory may also hold cached credentials
        fd = os.open(self.state_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
        except Exception:
            os.close(fd)
            raise

    def record_run(self, operation: str, outcome: Dict[str, Any]) -> None:
        """Remember the outcome of the latest run of ``operation``."""
        self.state["runs"][operation] = dict(outcome, timestamp=utc_timestamp())
        self.state["last_updated"] = utc_timestamp()
        self._write_state(self.state)

    def last_run(self, operation: str) -> Optional[Dict[str, Any]]:
        return self.state["runs"].get(operation)

    def local_paths(self) -> List[str]:
        """Paths owned by this environment (state file, cached kubeconfigs, temp files)."""
        if not os.path.isdir(self.env_dir):
            return []
        return sorted(os.path.join(self.env_dir, name) for name in os.listdir(self.env_dir))

    def purge(self) -> List[str]:
        """Remove the environment's local state. Returns paths that could not be removed."""
        leftovers: List[str] = []
        for path in self.local_paths():
            try:
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)
            except OSError as e:
                logging.getLogger(LOGGER_NAME).warning("Could not remove %s: %s", path, e)
                leftovers.append(path)
        if not leftovers and os.path.isdir(self.env_dir):
            try:
                os.rmdir(self.env_dir)
            except OSError as e:
                leftovers.append(self.env_dir)
                logging.getLogger(LOGGER_NAME).warning("Could not remove %s: %s", self.env_dir, e)
        self.state = self._new_state()
        return leftovers


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record)


def setup_logging(verbose: bool = False, log_format: str = "text") -> logging.Logger:
    """
    Configure root logging.

    Args:
        verbose: Enable debug logging
        log_format: 'text' or 'json'
    """
    level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(handler)

    # Library loggers are chatty at DEBUG
    for noisy in ("botocore", "boto3", "urllib3", "kubernetes"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger(LOGGER_NAME)


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def format_bytes(size: int) -> str:
    """Format a byte count using binary units."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if value < 1024 or unit == "TiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def confirm_phrase(prompt: str, expected: str, input_fn: Callable[[str], str] = input) -> bool:
    """
    Ask the operator to type an exact phrase.

    Args:
        prompt: Text shown before the input cursor
        expected: Phrase that must be typed exactly (surrounding whitespace ignored)
        input_fn: Input source, injectable for non-terminal callers

    Returns:
        True only if the typed text equals ``expected``
    """
    try:
        response = input_fn(prompt)
    except EOFError:
        return False
    return response.strip() == expected
