"""Bounded retry of store transactions on lock contention.

Only :class:`StoreContention` is retried.  Business errors and definite
store failures surface on the first attempt.  Re-running is safe
because every operation re-reads current state inside its transaction.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..exceptions import StoreContention
from . import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_retry(state: RetryCallState) -> None:
    metrics.TRANSACTION_RETRIES.inc()
    exc = state.outcome.exception() if state.outcome else None
    logger.warning("Store contention on attempt %d, retrying: %s", state.attempt_number, exc)


def run_with_retry(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    min_wait: float = 0.05,
    max_wait: float = 1.0,
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` contention failures occur."""
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(StoreContention),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(fn)
