"""Exponential backoff with jitter for outbound calls."""

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between.

    ``max_attempts`` counts every call, the first one included.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        if self.jitter:
            # 0 to 25% on top
            delay += delay * 0.25 * random.random()
        return min(delay, self.max_delay)


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    should_retry: Callable[[BaseException], bool] = lambda exc: True,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call ``fn`` until it succeeds, re-raising the last error once attempts run out."""
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn(*args, **kwargs)
        except retry_on as exc:
            if attempt == policy.max_attempts or not should_retry(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "Retrying after failure",
                call=getattr(fn, "__name__", repr(fn)),
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )
            sleep(delay)
    raise AssertionError("unreachable")
