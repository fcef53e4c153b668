# Overview: Retry and locking helpers shared by every service that writes.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Row lock for read-modify-write paths (payment ledger, status override).

    SQLite ignores SELECT ... FOR UPDATE; Postgres/MySQL honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of DB work, retrying lock/deadlock failures.

    The session is rolled back before every retry so `func` always starts
    from a clean transaction. After `attempts` tries the last error is
    re-raised; nothing here waits forever (the engine timeout bounds each try).
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    return None


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
