"""Follow-up task runners.

Work that must happen after a state transition commits (supplier submission,
notifications) is handed to a runner. A failing task is logged and never
propagates back into the code that scheduled it.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import structlog
from protean.domain import Domain

logger = structlog.get_logger(__name__)


class BackgroundTasks:
    """Bounded thread pool; each task runs inside a fresh domain context."""

    def __init__(self, domain: Domain, max_workers: int = 4) -> None:
        self._domain = domain
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="orderflow-task")

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        return self._executor.submit(self._run, name, fn, *args, **kwargs)

    def _run(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        with self._domain.domain_context():
            return _run_logged(name, fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineTasks:
    """Runs tasks immediately on the calling thread. Used by tests and one-shot CLIs."""

    def __init__(self) -> None:
        self.completed: list[str] = []

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        future.set_result(_run_logged(name, fn, *args, **kwargs))
        self.completed.append(name)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


def _run_logged(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return fn(*args, **kwargs)
    except Exception:
        logger.exception("Follow-up task failed", task=name)
        return None
