"""Retry/poll engine with pluggable backoff policies."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffStrategy(str, Enum):
    """Supported interval growth strategies."""

    CONSTANT = "constant"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Wait intervals between attempts and the limits that stop retrying.

    ``attempt`` is 1-based: ``next_interval(1)`` is the wait after the first failed
    attempt. ``jitter`` receives the computed delay and returns the delay to use, so
    randomization can be swapped in without touching call sites.
    """

    strategy: BackoffStrategy = BackoffStrategy.CONSTANT
    base_seconds: float = 1.0
    max_seconds: float | None = None
    multiplier: float = 2.0
    max_attempts: int | None = None
    max_duration_seconds: float | None = None
    jitter: Callable[[float], float] | None = None

    def __post_init__(self) -> None:
        if self.base_seconds < 0:
            raise ValueError(f"base_seconds must be >= 0, got {self.base_seconds}")
        if self.max_seconds is not None and self.max_seconds < 0:
            raise ValueError(f"max_seconds must be >= 0, got {self.max_seconds}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_duration_seconds is not None and self.max_duration_seconds < 0:
            raise ValueError(
                f"max_duration_seconds must be >= 0, got {self.max_duration_seconds}",
            )

    @classmethod
    def constant(
        cls,
        interval_seconds: float,
        *,
        max_attempts: int | None = None,
        max_duration_seconds: float | None = None,
        jitter: Callable[[float], float] | None = None,
    ) -> BackoffPolicy:
        return cls(
            strategy=BackoffStrategy.CONSTANT,
            base_seconds=interval_seconds,
            max_attempts=max_attempts,
            max_duration_seconds=max_duration_seconds,
            jitter=jitter,
        )

    @classmethod
    def exponential(  # noqa: PLR0913
        cls,
        base_seconds: float,
        *,
        max_seconds: float | None = None,
        multiplier: float = 2.0,
        max_attempts: int | None = None,
        max_duration_seconds: float | None = None,
        jitter: Callable[[float], float] | None = None,
    ) -> BackoffPolicy:
        return cls(
            strategy=BackoffStrategy.EXPONENTIAL,
            base_seconds=base_seconds,
            max_seconds=max_seconds,
            multiplier=multiplier,
            max_attempts=max_attempts,
            max_duration_seconds=max_duration_seconds,
            jitter=jitter,
        )

    def next_interval(self, attempt: int) -> float:
        """Seconds to wait after ``attempt`` before the next one."""

        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        if self.strategy == BackoffStrategy.CONSTANT:
            delay = self.base_seconds
        else:
            delay = self.base_seconds * (self.multiplier ** (attempt - 1))
        if self.max_seconds is not None:
            delay = min(delay, self.max_seconds)
        if self.jitter is not None:
            delay = max(0.0, self.jitter(delay))
        return delay

    def should_stop(self, *, attempt: int, elapsed_seconds: float) -> bool:
        """Whether no further attempt may be made after ``attempt`` attempts."""

        if self.max_attempts is not None and attempt >= self.max_attempts:
            return True
        return self.max_duration_seconds is not None and elapsed_seconds >= (
            self.max_duration_seconds
        )


def full_jitter(rng: random.Random | None = None) -> Callable[[float], float]:
    """Jitter drawing uniformly from ``[0, delay]``."""

    generator = rng or random.Random()  # noqa: S311

    def _apply(delay: float) -> float:
        return generator.uniform(0, delay)

    return _apply


class AttemptSignal(str, Enum):
    """What the action wants the engine to do next."""

    RETRY = "retry"
    SUCCEED = "succeed"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class AttemptResult(Generic[T]):
    """Typed outcome of one action invocation."""

    signal: AttemptSignal
    value: T | None = None
    error: BaseException | None = None
    reason: str | None = None

    @classmethod
    def retry(cls, reason: str | None = None) -> AttemptResult[T]:
        return cls(signal=AttemptSignal.RETRY, reason=reason)

    @classmethod
    def succeed(cls, value: T) -> AttemptResult[T]:
        return cls(signal=AttemptSignal.SUCCEED, value=value)

    @classmethod
    def fail(cls, error: BaseException) -> AttemptResult[T]:
        return cls(signal=AttemptSignal.FAIL, error=error)


class RetryExhausted(RuntimeError):
    """Attempt or time budget ran out before the action succeeded."""

    def __init__(
        self,
        *,
        operation: str,
        attempts: int,
        elapsed_seconds: float,
        last_reason: str | None = None,
        last_error: BaseException | None = None,
    ) -> None:
        detail = last_reason or (str(last_error) if last_error is not None else "no detail")
        super().__init__(
            f"{operation} did not succeed after {attempts} attempt(s) "
            f"in {elapsed_seconds:.2f}s: {detail}",
        )
        self.operation = operation
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        self.last_reason = last_reason
        self.last_error = last_error


class RetryCancelled(RuntimeError):
    """Cancellation token was set while waiting between attempts."""


def run_with_retry(  # noqa: PLR0913
    action: Callable[[], AttemptResult[T]],
    policy: BackoffPolicy,
    *,
    operation: str = "operation",
    retry_on: tuple[type[BaseException], ...] = (),
    cancel_event: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Invoke ``action`` until it succeeds, fails permanently or the policy stops it.

    Exceptions listed in ``retry_on`` count as transient retry signals; any other
    exception propagates immediately. A ``fail`` signal raises its error.
    """

    started = clock()
    attempt = 0
    last_reason: str | None = None
    last_error: BaseException | None = None

    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise RetryCancelled(f"{operation} was cancelled after {attempt} attempt(s).")

        attempt += 1
        try:
            result = action()
        except retry_on as error:
            last_error = error
            last_reason = f"{type(error).__name__}: {error}"
            logger.debug("%s attempt %d raised transient error: %s", operation, attempt, error)
        else:
            if result.signal == AttemptSignal.SUCCEED:
                return result.value  # type: ignore[return-value]
            if result.signal == AttemptSignal.FAIL:
                if result.error is None:
                    raise RuntimeError(f"{operation} failed without an error.")
                raise result.error
            last_reason = result.reason
            last_error = None

        elapsed = clock() - started
        if policy.should_stop(attempt=attempt, elapsed_seconds=elapsed):
            raise RetryExhausted(
                operation=operation,
                attempts=attempt,
                elapsed_seconds=elapsed,
                last_reason=last_reason,
                last_error=last_error,
            )

        delay = policy.next_interval(attempt)
        if policy.max_duration_seconds is not None:
            delay = min(delay, max(0.0, policy.max_duration_seconds - elapsed))
        logger.debug("%s attempt %d will retry in %.2fs", operation, attempt, delay)
        _wait(delay, cancel_event=cancel_event, sleep=sleep, operation=operation)


def _wait(
    delay: float,
    *,
    cancel_event: threading.Event | None,
    sleep: Callable[[float], None],
    operation: str,
) -> None:
    if delay <= 0:
        return
    if cancel_event is None:
        sleep(delay)
        return
    if cancel_event.wait(timeout=delay):
        raise RetryCancelled(f"{operation} was cancelled while waiting to retry.")
