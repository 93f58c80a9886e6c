"""Unit tests for the bounded contention retry policy."""

from __future__ import annotations

import pytest

from brokerage.exceptions import InsufficientBalance, StoreContention, StoreError
from brokerage.services.retry import run_with_retry


class Flaky:
    def __init__(self, failures: int, exc: Exception) -> None:
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "done"


def test_contention_is_retried_until_success() -> None:
    fn = Flaky(2, StoreContention("database is locked"))
    assert run_with_retry(fn, attempts=3, min_wait=0, max_wait=0) == "done"
    assert fn.calls == 3


def test_contention_gives_up_after_attempts() -> None:
    fn = Flaky(5, StoreContention("database is locked"))
    with pytest.raises(StoreContention):
        run_with_retry(fn, attempts=3, min_wait=0, max_wait=0)
    assert fn.calls == 3


@pytest.mark.parametrize("exc", [InsufficientBalance("no"), StoreError("disk full")])
def test_other_errors_are_not_retried(exc) -> None:
    fn = Flaky(1, exc)
    with pytest.raises(type(exc)):
        run_with_retry(fn, attempts=3, min_wait=0, max_wait=0)
    assert fn.calls == 1
