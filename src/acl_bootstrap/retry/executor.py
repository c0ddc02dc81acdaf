"""Bounded retry with a fixed delay.

Every remote call that can fail transiently (metadata not yet served,
tags not yet propagated, a write not yet visible) goes through a
``RetryExecutor``. The executor does no deduplication: the operation
must be safe to call again.

Usage::

    retry = RetryExecutor.from_policy(RetryPolicy(attempts=5, delay=2.0))
    record = retry.execute(lambda: store.get(key), description="read root secret")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, Field

from acl_bootstrap.errors import RetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Attempt budget and delay for one class of remote call."""

    attempts: int = Field(5, ge=1)
    """Maximum number of calls, including the first."""

    delay: float = Field(2.0, ge=0)
    """Seconds to sleep between failed attempts."""

    backoff: float = Field(1.0, ge=1.0)
    """Delay multiplier applied after each failure. 1.0 keeps the delay fixed."""


class RetryExecutor:
    """Calls an operation until it succeeds or the attempt budget runs out."""

    def __init__(
        self,
        max_attempts: int,
        delay: float,
        backoff: float = 1.0,
        _sleep: Callable[[float], None] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if delay < 0:
            raise ValueError("delay must not be negative")
        self._max_attempts = max_attempts
        self._delay = delay
        self._backoff = max(backoff, 1.0)
        self._sleep = _sleep or time.sleep

    @classmethod
    def from_policy(
        cls,
        policy: RetryPolicy,
        _sleep: Callable[[float], None] | None = None,
    ) -> RetryExecutor:
        return cls(policy.attempts, policy.delay, policy.backoff, _sleep=_sleep)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def delay(self) -> float:
        return self._delay

    def execute(
        self,
        operation: Callable[[], T],
        *,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        give_up_on: tuple[type[BaseException], ...] = (),
        description: str = "operation",
    ) -> T:
        """Return the first successful result of *operation*.

        Exceptions listed in *give_up_on*, or not listed in *retry_on*,
        propagate immediately without consuming further attempts.

        Raises:
            RetriesExhausted: If all attempts fail. Chained from the last
                error, which is also available as ``last_error``.
        """
        delay = self._delay
        last_error: BaseException | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                return operation()
            except give_up_on:
                raise
            except retry_on as exc:
                last_error = exc
                if attempt == self._max_attempts:
                    break
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description, attempt, self._max_attempts, exc, delay,
                )
                self._sleep(delay)
                delay *= self._backoff

        logger.error(
            "%s failed after %d attempt(s): %s",
            description, self._max_attempts, last_error,
        )
        raise RetriesExhausted(
            self._max_attempts, last_error, description,
        ) from last_error
