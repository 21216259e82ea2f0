"""Retrying executor for calls against rate-limited backends."""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import structlog
from azure.core.exceptions import ServiceRequestError, ServiceResponseError
from openai import APIConnectionError, APITimeoutError, RateLimitError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ..core.exceptions import TelemetryQueryException
from ..core.utils import SleepFunc, jitter_seconds

logger = structlog.get_logger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy: attempt n waits min(2^n * base, cap) plus jitter."""
    max_attempts: int = 3
    base_delay_ms: float = 5000.0
    cap_delay_ms: float = 60000.0
    max_jitter_ms: float = 1000.0

    @classmethod
    def telemetry(cls) -> "RetryPolicy":
        return cls(max_attempts=3, base_delay_ms=5000.0, cap_delay_ms=60000.0)

    @classmethod
    def ai(cls) -> "RetryPolicy":
        return cls(max_attempts=5, base_delay_ms=1000.0, cap_delay_ms=60000.0)


@dataclass
class ExecutionResult(Generic[T]):
    """Outcome of one unit of work. Failures are values, not exceptions."""
    success: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    exhausted: bool = False


def compute_backoff_delay(attempt: int, policy: RetryPolicy,
                          rng: Callable[[], float] = random.random) -> float:
    """Seconds to wait after failed attempt ``attempt`` (1-based)."""
    base = min((2 ** attempt) * policy.base_delay_ms, policy.cap_delay_ms)
    return base / 1000.0 + jitter_seconds(policy.max_jitter_ms, rng)


def is_retryable_error(error: BaseException) -> bool:
    """Rate limiting and timeout/connection failures are transient; everything else is permanent."""
    if isinstance(error, TelemetryQueryException):
        return error.retryable or error.status_code == 429
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return True
    if isinstance(error, (RateLimitError, APITimeoutError, APIConnectionError)):
        return True
    return getattr(error, "status_code", None) == 429


class RetryingExecutor:
    """Runs async units of work with retry and exponential backoff.

    ``execute`` never raises: exhaustion and permanent failures come back as
    an ``ExecutionResult`` with ``success=False``.
    """

    def __init__(self, policy: Optional[RetryPolicy] = None, sleep: SleepFunc = asyncio.sleep,
                 rng: Callable[[], float] = random.random, name: str = "executor"):
        self.policy = policy or RetryPolicy.telemetry()
        self._sleep = sleep
        self._rng = rng
        self.logger = logger.bind(executor=name)

    def _wait(self, retry_state: RetryCallState) -> float:
        return compute_backoff_delay(retry_state.attempt_number, self.policy, self._rng)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.warning(
            f"Retrying after attempt {retry_state.attempt_number}/{self.policy.max_attempts}",
            error=str(error),
            wait_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        )

    async def execute(self, unit_of_work: Callable[[], Awaitable[T]], label: str = "") -> ExecutionResult[T]:
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(is_retryable_error),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    value = await unit_of_work()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            exhausted = is_retryable_error(e)
            self.logger.error(
                f"Unit of work failed after {attempts} attempt(s)",
                label=label,
                error=str(e),
                exhausted=exhausted,
            )
            return ExecutionResult(success=False, error=e, attempts=attempts, exhausted=exhausted)

        return ExecutionResult(success=True, value=value, attempts=attempts)

    async def execute_or_raise(self, unit_of_work: Callable[[], Awaitable[T]], label: str = "") -> T:
        """Like ``execute`` but re-raises the final error."""
        result = await self.execute(unit_of_work, label)
        if not result.success:
            raise result.error
        return result.value


__all__ = [
    "ExecutionResult",
    "RetryPolicy",
    "RetryingExecutor",
    "compute_backoff_delay",
    "is_retryable_error",
]
