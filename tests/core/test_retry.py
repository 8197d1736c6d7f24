"""Tests for :mod:`reposync.core.retry`."""

from __future__ import annotations

import pytest

from reposync.core.retry import RetryExhaustedError, linear_backoff, run_with_retry


class _Flaky:
    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or RuntimeError("boom")
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_returns_first_success_without_sleeping() -> None:
    sleeps: list[float] = []
    operation = _Flaky(failures=0)

    assert run_with_retry(operation, max_attempts=3, sleep=sleeps.append) == "ok"
    assert operation.calls == 1
    assert sleeps == []


def test_retries_with_backoff_schedule_and_repeats_last_delay() -> None:
    sleeps: list[float] = []
    operation = _Flaky(failures=3)

    result = run_with_retry(
        operation,
        max_attempts=4,
        backoff=(2.0, 4.0),
        sleep=sleeps.append,
    )

    assert result == "ok"
    assert operation.calls == 4
    assert sleeps == [2.0, 4.0, 4.0]


def test_fallback_receives_last_error_and_attempt_count() -> None:
    seen: list[tuple[str, int]] = []
    operation = _Flaky(failures=10, error=ValueError("still broken"))

    def _fallback(exc: Exception, attempts: int) -> str:
        seen.append((str(exc), attempts))
        return "fallback"

    result = run_with_retry(
        operation,
        max_attempts=3,
        backoff=(1.0,),
        fallback=_fallback,
        sleep=lambda _: None,
    )

    assert result == "fallback"
    assert operation.calls == 3
    assert seen == [("still broken", 3)]


def test_raises_retry_exhausted_without_fallback() -> None:
    operation = _Flaky(failures=5)

    with pytest.raises(RetryExhaustedError) as exc_info:
        run_with_retry(
            operation,
            max_attempts=2,
            sleep=lambda _: None,
            name="vdb-upsert-batch",
        )

    error = exc_info.value
    assert error.attempts == 2
    assert error.operation == "vdb-upsert-batch"
    assert isinstance(error.last_error, RuntimeError)
    assert "failed after 2 attempt(s)" in str(error)


def test_errors_outside_retry_on_propagate_immediately() -> None:
    operation = _Flaky(failures=5, error=KeyError("nope"))

    with pytest.raises(KeyError):
        run_with_retry(
            operation,
            max_attempts=3,
            retry_on=(RuntimeError,),
            sleep=lambda _: None,
        )

    assert operation.calls == 1


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        run_with_retry(lambda: None, max_attempts=0)


def test_linear_backoff() -> None:
    assert linear_backoff(2.0, 3) == (2.0, 4.0, 6.0)
    assert linear_backoff(0.5, 0) == ()
