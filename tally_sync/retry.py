"""
Backoff policy shared by the HTTP clients.

Wraps tenacity so that attempt caps and delays come from configuration
instead of being fixed at decoration time.
"""
from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Any, Callable
import requests
from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from .errors import RetryableHTTPError, TallyConnectionError

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

DEFAULT_RETRY_ON: tuple[type[BaseException], ...] = (
    requests.ConnectionError,
    requests.Timeout,
    RetryableHTTPError,
    TallyConnectionError,
)


def is_retryable_status(status: int) -> bool:
    """429 and every 5xx are worth another attempt."""
    return status in RETRYABLE_STATUS or 500 <= status < 600


@dataclass
class RetryPolicy:
    """
    Linear backoff: the n-th retry waits ``delay * n`` seconds.

    Usage:
        policy = RetryPolicy(attempts=5, delay=0.5)
        body = policy.run(session.post, url, json=payload, description="bulk import")
    """

    attempts: int = 5
    delay: float = 0.5
    retry_on: tuple[type[BaseException], ...] = DEFAULT_RETRY_ON
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(attempts=config.retry_attempts, delay=config.retry_delay)

    def retrying(self, description: str = "request") -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_incrementing(start=self.delay, increment=self.delay),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=lambda rs: logger.warning(
                f"Retrying {description} (attempt {rs.attempt_number}/{self.attempts}) "
                f"after error: {rs.outcome.exception()}"
            ),
            sleep=self.sleep,
            reraise=True,
        )

    def run(self, fn: Callable[..., Any], *args, description: str = "request", **kwargs) -> Any:
        """Call fn until it succeeds or attempts run out; re-raises the last error."""
        return self.retrying(description)(fn, *args, **kwargs)
