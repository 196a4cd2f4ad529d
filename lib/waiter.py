"""Generic wait/poll utilities for lifecycle workflows."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple

from lib.utils import CancellationToken

ConditionFn = Callable[[], Tuple[bool, str]]


def _log_done(logger: logging.Logger, description: str, detail: str) -> None:
    if detail:
        logger.info("%s complete: %s", description, detail)
    else:
        logger.info("%s complete", description)


def wait_for_condition(
    description: str,
    condition_fn: ConditionFn,
    *,
    timeout: float = 600,
    interval: float = 30,
    logger: logging.Logger,
    cancel_token: Optional[CancellationToken] = None,
) -> bool:
    """Poll until a condition succeeds, the timeout expires or cancellation is requested.

    Never raises on timeout: callers decide whether an unfinished wait is fatal.
    Returns True only when the condition reported done.
    """

    start_time = time.time()
    logger.info("Waiting for %s (timeout: %ss)...", description, timeout)

    while time.time() - start_time < timeout:
        if cancel_token is not None and cancel_token.cancelled:
            logger.warning("%s wait interrupted: %s", description, cancel_token.reason)
            return False

        done, detail = condition_fn()
        if done:
            _log_done(logger, description, detail)
            return True

        elapsed = int(time.time() - start_time)
        logger.debug("%s in progress: %s (elapsed: %ss)", description, detail or "-", elapsed)

        # Never sleep past the deadline
        remaining = timeout - (time.time() - start_time)
        time.sleep(max(0.0, min(interval, remaining)))

    done, detail = condition_fn()
    if done:
        _log_done(logger, description, detail)
        return True

    logger.warning("%s not complete after %ss timeout%s", description, timeout, f" ({detail})" if detail else "")
    return False
