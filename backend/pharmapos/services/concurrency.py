# Overview: Service-layer operations for concurrency; transactions, locking and retries.

from __future__ import annotations

import time
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() refreshes rows already in the identity map so the
    decision is taken on the locked values, not on a stale snapshot.
    """
    return query.with_for_update().populate_existing()


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
            current_app.logger.warning(
                "Concurrency conflict (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, stock_keys: Iterable[tuple[int, int]] = (), attempts: int = 3):
    """
    Run `func` as one unit of work.

    - Holds the stock lock of every (store_id, product_id) in stock_keys for
      the whole read-decide-write-commit sequence
    - Commits once at the end; any exception rolls back everything, so a
      failure on the last lot or line leaves no partial movements behind
    - Concurrency conflicts are retried from scratch
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise

    keys = list(stock_keys)
    if not keys:
        return run_with_retry(_op, attempts=attempts)

    registry = current_app.extensions["stock_locks"]
    with registry.hold(keys):
        return run_with_retry(_op, attempts=attempts)
