# Overview: Unit-of-work helpers shared by every engine operation.

from __future__ import annotations

import time
from functools import wraps

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

    Opt-in for callers; engine operations never retry on their own.
    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors propagate untouched.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def unit_of_work(func):
    """
    Run a service operation as one atomic transaction.

    Commits once when the operation returns, rolls back everything it wrote
    when it raises. Lock and stale-data errors propagate to the caller like
    any other failure. Nested calls (one engine calling another) join the
    outer unit instead of committing early.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if db.session.info.get("in_unit_of_work"):
            return func(*args, **kwargs)

        db.session.info["in_unit_of_work"] = True
        try:
            result = func(*args, **kwargs)
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise
        finally:
            db.session.info.pop("in_unit_of_work", None)

    return wrapper
