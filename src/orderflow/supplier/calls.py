"""Bounded, paced, time-limited execution of outbound supplier calls.

All supplier traffic (submissions, status polls, cancellations) goes through
one ``SupplierCalls`` instance:

* at most ``max_workers`` calls are in flight at once
* call starts are spaced ``1 / rate_per_second`` apart
* a caller stops waiting after ``timeout`` seconds and gets a ``SupplierTimeout``

An abandoned call keeps its worker until the underlying client gives up, so a
hanging supplier can occupy at most the pool, never the caller.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, TypeVar

import structlog

from orderflow.errors import SupplierError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SupplierTimeout(SupplierError):
    """The call was abandoned; its real outcome at the supplier is unknown."""

    def __init__(self, supplier_id: str, timeout: float):
        super().__init__(supplier_id, f"No response within {timeout:g}s", retryable=True)


class SupplierCalls:
    def __init__(
        self,
        max_workers: int,
        timeout: float,
        rate_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_workers = max_workers
        self.timeout = timeout
        self._interval = 1.0 / rate_per_second
        self._clock = clock
        self._sleep = sleep
        self._pace_lock = threading.Lock()
        self._next_start = 0.0
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="supplier-call")

    def _wait_for_slot(self) -> None:
        with self._pace_lock:
            now = self._clock()
            start = max(now, self._next_start)
            self._next_start = start + self._interval
        if start > now:
            self._sleep(start - now)

    def _paced(self, fn: Callable[..., T], *args: Any) -> T:
        self._wait_for_slot()
        return fn(*args)

    def submit(self, fn: Callable[..., T], *args: Any) -> Future:
        return self._executor.submit(self._paced, fn, *args)

    def result(self, future: Future, supplier_id: str) -> Any:
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as exc:
            future.cancel()
            logger.warning("Supplier call abandoned", supplier_id=supplier_id, timeout=self.timeout)
            raise SupplierTimeout(supplier_id, self.timeout) from exc

    def call(self, supplier_id: str, fn: Callable[..., T], *args: Any) -> T:
        return self.result(self.submit(fn, *args), supplier_id)

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
