# Overview: Concurrency helpers; locking, retry, and translation of driver errors into typed failures.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, StoreUnavailableError, ValidationError


_CONFLICT_MARKERS = ("locked", "deadlock", "could not serialize", "busy")
_UNIQUE_MARKERS = ("unique", "duplicate")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def translate_db_error(exc: SQLAlchemyError) -> Exception:
    """
    Map a driver/ORM failure onto the typed error the caller acts on.

    Lock waits, serialization failures, optimistic-lock misses and unique
    violations mean another writer got there first: ConflictError, retry
    the whole operation. Anything else means the store itself failed.
    """
    message = str(getattr(exc, "orig", None) or exc).lower()
    if isinstance(exc, StaleDataError):
        return ConflictError("Record was modified concurrently")
    if isinstance(exc, IntegrityError):
        if any(marker in message for marker in _UNIQUE_MARKERS):
            return ConflictError("Concurrent write collided on a unique key")
        return ValidationError(f"Rejected by database constraint: {message}")
    if isinstance(exc, OperationalError) and any(marker in message for marker in _CONFLICT_MARKERS):
        return ConflictError("Database is busy; concurrent write could not be serialized")
    return StoreUnavailableError(f"Store call failed: {exc.__class__.__name__}")


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency conflicts.

    func must be self-contained: every attempt starts from fresh reads, so
    a retry never reuses state (such as a reserved range) from a failed
    attempt. The unit of work is expected to have rolled itself back
    before ConflictError reaches us. After the last attempt the conflict
    propagates to the caller.
    """
    last_exc = None
    for attempt in range(max(attempts, 1)):
        try:
            return func()
        except ConflictError as exc:
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            if backoff_base:
                time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
