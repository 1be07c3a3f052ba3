"""
Exception taxonomy shared by the scheduler, queue and video pipeline.

- ConfigurationError: missing credentials, unknown channel or niche. Never retried.
- TransientError: network / rate-limit style failure. Retried with backoff.
- CircuitOpenError: a circuit breaker is open for the named operation.
- InvalidTransition: illegal job lifecycle transition.
- UnknownJobType: dequeued job whose payload type has no handler.
"""
from __future__ import annotations


class ConfigurationError(Exception):
    """Raised for setup problems that retrying cannot fix."""
    pass


class TransientError(Exception):
    """Raised for failures expected to clear up on their own."""

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.code = code


class CircuitOpenError(Exception):
    """Raised when calls to a degraded dependency are short-circuited."""

    def __init__(self, operation_name: str, retry_after_sec: float):
        super().__init__(f"Circuit breaker OPEN for {operation_name}")
        self.operation_name = operation_name
        self.retry_after_sec = retry_after_sec


class InvalidTransition(Exception):
    """Raised when a job is moved to a status not reachable from its current one."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Job {job_id}: illegal transition {current} -> {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class UnknownJobType(Exception):
    """Raised when a job payload carries a type nobody handles."""
    pass
