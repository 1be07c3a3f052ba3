"""
Resilience helpers for calls to external services.

- retry_operation / retry_with_backoff: bounded attempts, exponential delay,
  only for errors on the transient allow-list
- CircuitBreaker: per-operation CLOSED -> OPEN -> HALF_OPEN -> CLOSED guard
"""
from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from viral_machine.errors import CircuitOpenError, TransientError
from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MARKERS = (
    "econnreset",
    "etimedout",
    "enotfound",
    "eai_again",
    "econnrefused",
    "epipe",
    "rate_limit",
    "quota_exceeded",
    "service_unavailable",
    "timeout",
)


def is_retryable(error: BaseException) -> bool:
    """True for transient failures worth another attempt."""
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, (TransientError, ConnectionError, TimeoutError, httpx.TransportError)):
        return True
    message = str(error).lower()
    code = str(getattr(error, "code", "") or "").lower()
    return any(marker in message or marker in code for marker in RETRYABLE_MARKERS)


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    retry_delay_ms: int = 5000,
    exponential_backoff: bool = True,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    on_retry: Callable[[BaseException, int], Awaitable[None]] | None = None,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` up to ``max_retries`` times.

    Delay before attempt k (k >= 2) is ``retry_delay_ms * 2**(k-2)`` with
    exponential backoff, ``retry_delay_ms`` otherwise. Non-retryable errors
    propagate immediately; after the last attempt the last error is raised.
    """
    max_retries = max(1, max_retries)

    for attempt in range(1, max_retries + 1):
        try:
            result = await operation()
            if attempt > 1:
                logger.info(f"[retry] {operation_name} succeeded after {attempt} attempts")
            return result
        except Exception as e:
            logger.warning(f"[retry] {operation_name} failed (attempt {attempt}/{max_retries}): {e}")

            if attempt >= max_retries or not should_retry(e):
                logger.error(f"[retry] {operation_name} failed permanently after {attempt} attempts: {e}")
                raise

            delay_ms = retry_delay_ms * (2 ** (attempt - 1)) if exponential_backoff else retry_delay_ms
            logger.info(f"[retry] Retrying {operation_name} in {delay_ms}ms (attempt {attempt + 1})")

            if on_retry is not None:
                await on_retry(e, attempt)

            await asyncio.sleep(delay_ms / 1000)

    raise RuntimeError("unreachable")  # pragma: no cover


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int | None = None,
    backoff_ms: int | None = None,
    *,
    operation_name: str = "operation",
) -> T:
    """Exponential-backoff retry with UPLOAD_MAX_RETRIES / RETRY_BACKOFF_MS defaults."""
    settings = get_settings()
    return await retry_operation(
        operation,
        max_retries=settings.upload_max_retries if max_retries is None else max_retries,
        retry_delay_ms=settings.retry_backoff_ms if backoff_ms is None else backoff_ms,
        exponential_backoff=True,
        operation_name=operation_name,
    )


class CircuitState(str, Enum):
    closed = "CLOSED"
    open = "OPEN"
    half_open = "HALF_OPEN"


class CircuitBreaker:
    """Stops calling a failing dependency for ``reset_timeout_sec`` after
    ``failure_threshold`` consecutive failures."""

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        reset_timeout_sec: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_sec = reset_timeout_sec
        self._clock = clock
        self.state = CircuitState.closed
        self.failures = 0
        self.next_attempt_at = 0.0

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.state == CircuitState.open:
            remaining = self.next_attempt_at - self._clock()
            if remaining > 0:
                raise CircuitOpenError(self.name, remaining)
            self.state = CircuitState.half_open
            logger.info(f"[circuit] {self.name} HALF_OPEN, probing")

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self.state == CircuitState.half_open:
            logger.info(f"[circuit] {self.name} CLOSED")
        self.state = CircuitState.closed
        self.failures = 0

    def _on_failure(self) -> None:
        self.failures += 1
        if self.state == CircuitState.half_open or self.failures >= self.failure_threshold:
            self.state = CircuitState.open
            self.next_attempt_at = self._clock() + self.reset_timeout_sec
            logger.error(
                f"[circuit] {self.name} OPEN after {self.failures} failures "
                f"(cooldown {self.reset_timeout_sec}s)"
            )

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "failure_threshold": self.failure_threshold,
        }


class CircuitBreakerRegistry:
    """Named breakers sharing one configuration."""

    def __init__(self, *, failure_threshold: int = 5, reset_timeout_sec: float = 60.0):
        self.failure_threshold = failure_threshold
        self.reset_timeout_sec = reset_timeout_sec
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls) -> "CircuitBreakerRegistry":
        settings = get_settings()
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout_sec=settings.circuit_reset_timeout_sec,
        )

    def get(self, name: str) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name,
                failure_threshold=self.failure_threshold,
                reset_timeout_sec=self.reset_timeout_sec,
            )
        return self._breakers[name]

    async def call(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.get(name).call(operation)

    def snapshot(self) -> list[dict[str, Any]]:
        return [b.snapshot() for b in self._breakers.values()]
