"""
Retry Executor
==============

Wraps one remote call with bounded retries driven by the backoff policy.

Rules:
    - PERMANENT / UNKNOWN error: return the failure immediately, no sleep
    - TRANSIENT error with attempts left: sleep compute_delay(n) and retry
    - attempts exhausted: return the last error and the attempt count

Sleeps happen strictly between attempts, never after the last one. Exactly
one log event is emitted per attempt. The executor holds no mutable state
across calls, so one instance can serve every node concurrently.

Usage:
    executor = RetryExecutor(max_attempts=3, initial_delay=2.0, max_delay=30.0)
    result = await executor.execute(lambda: probe.probe("DC01"), node="DC01")
    if not result.success:
        print(result.error_kind, result.attempts)
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from fleetheal.core.exceptions import PolicyConfigError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import Clock, ErrorKind, RetryAttemptRecord, RetryResult, utc_now
from fleetheal.resilience.backoff import classify, compute_delay, is_retryable

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


class RetryExecutor:
    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 2.0,
        max_delay: float = 30.0,
        jitter: bool = False,
        operation: str = "remote_call",
        sleep: SleepFunc | None = None,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise PolicyConfigError(
                "max_attempts must be at least 1", details={"max_attempts": max_attempts}
            )
        if initial_delay < 0 or max_delay < 0:
            raise PolicyConfigError(
                "retry delays must be non-negative",
                details={"initial_delay": initial_delay, "max_delay": max_delay},
            )
        if max_delay < initial_delay:
            raise PolicyConfigError(
                "max_delay must be >= initial_delay",
                details={"initial_delay": initial_delay, "max_delay": max_delay},
            )

        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.operation = operation
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self._rng = rng
        self._logger = get_logger("fleetheal.retry")

    def delay_for(self, attempt: int) -> float:
        """Delay slept after failed attempt number ``attempt`` (1-based)."""
        return compute_delay(
            attempt - 1, self.initial_delay, self.max_delay, jitter=self.jitter, rng=self._rng
        )

    async def execute(
        self,
        action: Callable[[], Awaitable[T]],
        /,
        **context: Any,
    ) -> RetryResult[T]:
        """
        Run ``action`` until it succeeds, fails non-transiently, or the
        attempt budget is spent.

        Args:
            action: zero-argument coroutine factory, called once per attempt
            **context: fields added to every log event (node, category, ...)
        """
        history: list[RetryAttemptRecord] = []
        last_error: BaseException | None = None
        last_kind: ErrorKind | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                last_kind = classify(e)
                will_retry = is_retryable(last_kind) and attempt < self.max_attempts
                delay = self.delay_for(attempt) if will_retry else 0.0

                history.append(
                    RetryAttemptRecord(
                        attempt=attempt,
                        kind=last_kind,
                        delay=delay,
                        timestamp=self._clock(),
                        error=str(e),
                    )
                )

                fields = {
                    "operation": self.operation,
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "kind": last_kind.name,
                    "delay": delay,
                    "error": str(e),
                    **context,
                }
                if will_retry:
                    self._logger.warning(f"{self.operation} attempt {attempt} failed, retrying", **fields)
                    await self._sleep(delay)
                    continue

                self._logger.error(f"{self.operation} attempt {attempt} failed, giving up", **fields)
                break

            history.append(
                RetryAttemptRecord(attempt=attempt, kind=None, delay=0.0, timestamp=self._clock())
            )
            self._logger.debug(
                f"{self.operation} attempt {attempt} succeeded",
                **{
                    "operation": self.operation,
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "kind": None,
                    "delay": 0.0,
                    **context,
                },
            )
            return RetryResult(success=True, value=value, attempts=attempt, history=history)

        return RetryResult(
            success=False,
            error=last_error,
            error_kind=last_kind,
            attempts=len(history),
            history=history,
        )
