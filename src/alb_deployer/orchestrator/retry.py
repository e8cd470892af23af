"""Bounded retry policy shared by the install retry and the status poll."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class RetryCancelled(RuntimeError):
    """Raised when the cancel event is set between attempts."""


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    succeeded: bool


@dataclass
class RetryPolicy:
    """
    Fixed or geometric delay retry with an early-exit predicate.

    With `delay_before_first` the delay precedes every attempt, which suits
    polling a resource that cannot be ready immediately. Otherwise the delay
    only separates consecutive attempts.
    """

    max_attempts: int
    delay: float
    backoff: float = 1.0
    delay_before_first: bool = False
    sleep: Callable[[float], None] = time.sleep
    cancel_event: Optional[threading.Event] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0 or self.backoff < 1:
            raise ValueError("delay must be >= 0 and backoff >= 1")

    def delays(self) -> Iterator[float]:
        """Delay to wait before each attempt, in order."""
        current = self.delay
        for attempt in range(1, self.max_attempts + 1):
            if attempt == 1 and not self.delay_before_first:
                yield 0.0
                continue
            yield current
            current *= self.backoff

    def run(
        self,
        attempt: Callable[[int], T],
        succeeded: Callable[[T], bool] = bool,
        on_retry: Optional[Callable[[int, T], None]] = None,
    ) -> RetryOutcome[T]:
        value: Optional[T] = None
        for number, delay in enumerate(self.delays(), 1):
            if delay:
                self._pause(delay)
            value = attempt(number)
            if succeeded(value):
                return RetryOutcome(value=value, attempts=number, succeeded=True)
            if on_retry and number < self.max_attempts:
                on_retry(number, value)
        return RetryOutcome(value=value, attempts=self.max_attempts, succeeded=False)

    def _pause(self, delay: float) -> None:
        self._check_cancelled()
        self.sleep(delay)
        self._check_cancelled()

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RetryCancelled("Retry loop cancelled")
