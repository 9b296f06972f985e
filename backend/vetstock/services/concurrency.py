# Overview: Locking and retry helpers shared by the stock and invoice services.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class ProductLockRegistry:
    """
    In-process mutexes keyed by (clinic_id, product_id).

    Serializes depletion and receiving for one product inside a worker
    process. Row locks (lock_for_update) cover multi-process deployments on
    databases that honor them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[int, int], threading.Lock] = {}

    def _lock_for(self, clinic_id: int, product_id: int) -> threading.Lock:
        key = (clinic_id, product_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, clinic_id: int, product_id: int):
        lock = self._lock_for(clinic_id, product_id)
        with lock:
            yield


product_locks = ProductLockRegistry()
