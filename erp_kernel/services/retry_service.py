"""
Bounded retry of whole transactions on transient concurrency failures.

Responsibility:
    Re-runs a unit of work when the database reports a lock timeout,
    deadlock or serialization failure.  Business-rule rejections
    (ConservationError, ValidationError, LifecycleError) are facts, not
    faults, and propagate on the first attempt.

Architecture position:
    Kernel > Services -- imperative shell.  Used by the command layer,
    which opens a fresh session for every attempt.

Invariants enforced:
    max_retries -- the work runs at most ``max_retries + 1`` times; after
    that RetryExhaustedError is raised carrying the last transient reason.

Failure modes:
    - RetryExhaustedError once the budget is used up.
    - Any non-transient exception propagates unchanged.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError

from erp_kernel.exceptions import ConcurrencyError, RetryExhaustedError
from erp_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
_SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient(exc: BaseException) -> bool:
    """True when re-running the transaction may succeed."""
    if isinstance(exc, RetryExhaustedError):
        return False
    if isinstance(exc, ConcurrencyError):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        if _sqlstate(exc) in TRANSIENT_SQLSTATES:
            return True
        message = str(exc.orig).lower()
        return any(m in message for m in _SQLITE_LOCK_MESSAGES)
    return False


def run_with_retry(
    operation: str,
    work: Callable[[], T],
    *,
    max_retries: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``work`` until it succeeds, fails permanently, or the budget runs out.

    ``work`` must be a complete transaction: it opens, commits and closes its
    own session so that a retry starts from a clean snapshot.
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    attempt = 0
    while True:
        attempt += 1
        try:
            return work()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt > max_retries:
                logger.error(
                    "retry_exhausted",
                    extra={"operation": operation, "attempts": attempt, "reason": str(exc)},
                )
                raise RetryExhaustedError(operation, attempt, str(exc)) from exc
            delay = backoff_seconds * attempt
            logger.warning(
                "transient_failure_retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "delay_seconds": delay,
                    "reason": str(exc),
                },
            )
            sleep(delay)
