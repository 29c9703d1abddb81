# Overview: Per-(store, product) in-process locks that serialize stock mutations.

"""
Stock lock registry.

WHY: Availability checks are read-then-decide. Two requests for the same
(store, product) must not both read the same snapshot and both consume it.
Every mutating inventory workflow holds the lock of each (store, product)
pair it touches from its first read until after its commit.

The registry is a Flask extension (one instance per app via init_app), so a
deployment that runs several processes can swap it for a shared lock service
without touching the workflows.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterable


class StockLockTimeout(RuntimeError):
    """Raised when a stock lock could not be acquired in time."""


class StockLockRegistry:
    def __init__(self, app=None, *, timeout: float = 10.0):
        self.timeout = timeout
        self._locks: dict[tuple[int, int], threading.RLock] = {}
        self._guard = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.timeout = float(app.config.get("STOCK_LOCK_TIMEOUT", self.timeout))
        app.extensions["stock_locks"] = self

    def _lock_for(self, key: tuple[int, int]) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[tuple[int, int]]):
        """
        Acquire every (store_id, product_id) lock in `keys`.

        Keys are deduplicated and taken in sorted order so two workflows
        touching overlapping pairs cannot deadlock.
        """
        ordered = sorted(set(keys))
        acquired: list[threading.RLock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=self.timeout):
                    raise StockLockTimeout(f"Timed out waiting for stock lock store={key[0]} product={key[1]}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
