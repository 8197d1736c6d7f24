"""Explicit retry wrapper shared by the orchestrator and the gateway."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar

from reposync.core.logging import Logger, get_logger

__all__ = [
    "RetryExhaustedError",
    "linear_backoff",
    "run_with_retry",
]

T = TypeVar("T")

Fallback = Callable[[Exception, int], T]
"""Called with the last error and the attempt count once retries run out."""


@dataclass(slots=True)
class RetryExhaustedError(RuntimeError):
    """Raised when every attempt failed and no fallback was supplied."""

    operation: str
    attempts: int
    last_error: Exception

    def __post_init__(self) -> None:
        RuntimeError.__init__(
            self,
            f"{self.operation} failed after {self.attempts} attempt(s): "
            f"{self.last_error}",
        )


def linear_backoff(base: float, attempts: int) -> tuple[float, ...]:
    """Return ``base * attempt`` delays for ``attempts`` tries.

    Example:
        >>> linear_backoff(2.0, 3)
        (2.0, 4.0, 6.0)
    """

    return tuple(base * attempt for attempt in range(1, attempts + 1))


def _delay_for(backoff: Sequence[float], attempt: int) -> float:
    """Return the wait before retrying after failed ``attempt`` (1-based)."""

    if not backoff:
        return 0.0
    index = min(attempt - 1, len(backoff) - 1)
    return max(0.0, float(backoff[index]))


def run_with_retry(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    backoff: Sequence[float] = (),
    fallback: Fallback[T] | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    logger: Logger | None = None,
    name: str = "operation",
) -> T:
    """Invoke ``operation`` until it succeeds or ``max_attempts`` is reached.

    Exceptions outside ``retry_on`` propagate immediately. Once attempts are
    exhausted the ``fallback`` result is returned; without a fallback a
    :class:`RetryExhaustedError` is raised from the last failure.

    Args:
        operation: Zero-argument callable to invoke.
        max_attempts: Total attempts including the first call.
        backoff: Delay in seconds before each retry. ``backoff[i]`` is used
            after the ``i + 1``-th failure; the last entry repeats.
        fallback: Producer of the final result when every attempt fails.
        retry_on: Exception types that trigger another attempt.
        sleep: Injectable sleep used between attempts.
        logger: Logger receiving retry events.
        name: Operation label for log events and errors.

    Example:
        >>> calls = []
        >>> def flaky():
        ...     calls.append(1)
        ...     if len(calls) < 2:
        ...         raise RuntimeError("boom")
        ...     return "ok"
        >>> run_with_retry(flaky, max_attempts=3, sleep=lambda _: None)
        'ok'
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    log = logger or get_logger(__name__)
    attempt = 0
    while True:
        attempt += 1
        try:
            result = operation()
        except retry_on as exc:
            if attempt >= max_attempts:
                log.error(
                    "retry-exhausted",
                    operation=name,
                    attempts=attempt,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
                if fallback is not None:
                    return fallback(exc, attempt)
                raise RetryExhaustedError(
                    operation=name,
                    attempts=attempt,
                    last_error=exc,
                ) from exc

            delay = _delay_for(backoff, attempt)
            log.warning(
                "retry-scheduled",
                operation=name,
                attempt=attempt,
                max_attempts=max_attempts,
                retry_delay=delay,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            if delay > 0:
                sleep(delay)
            continue

        if attempt > 1:
            log.info("retry-recovered", operation=name, attempts=attempt)
        return result
