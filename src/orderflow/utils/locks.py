"""Per-order mutual exclusion.

The unit of locking is always a single order (or a single supplier order), never
the whole system. Two backends share the ``hold(key)`` context manager:

* ``KeyedLocks`` keeps one ``threading.Lock`` per key inside the process.
* ``AdvisoryLocks`` takes a Postgres session-level advisory lock so several
  processes serialize on the same order.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

logger = structlog.get_logger(__name__)


class KeyedLocks:
    """Reference-counted registry of per-key locks.

    Entries are dropped once nobody holds or waits on them, so the registry only
    grows with the number of orders being changed concurrently.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class AdvisoryLocks:
    """Postgres advisory locks keyed by ``hashtext(key)``.

    The lock is session scoped, so the connection is held for the duration of
    the block and the lock is released explicitly before returning it.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def from_uri(cls, database_uri: str) -> "AdvisoryLocks":
        return cls(create_engine(database_uri, pool_pre_ping=True))

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT pg_advisory_lock(hashtext(:key)::bigint)"), {"key": key})
            conn.commit()
            try:
                yield
            finally:
                conn.execute(text("SELECT pg_advisory_unlock(hashtext(:key)::bigint)"), {"key": key})
                conn.commit()
                logger.debug("Advisory lock released", key=key)
