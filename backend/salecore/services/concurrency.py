# Overview: Optimistic-concurrency helpers shared by every counter the sale engine mutates.

from __future__ import annotations

import time

from sqlalchemy import inspect, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceError
from ..extensions import db


def primary_key_column(model):
    return inspect(model).primary_key[0]


def build_cas_statement(model, pk, column: str, expected, new, **extra_values):
    """
    UPDATE <model> SET <column> = new [, extra...] WHERE pk = :pk AND <column> = expected.

    The statement affects exactly one row when the stored value still equals
    `expected`, zero rows otherwise. Callers read `rowcount` to decide.
    """
    col = getattr(model, column)
    values = {column: new}
    values.update(extra_values)
    return (
        update(model)
        .where(primary_key_column(model) == pk, col == expected)
        .values(values)
        .execution_options(synchronize_session=False)
    )


def cas_adjust(read, swap, delta: int, *, floor: int | None = None, attempts: int = 25):
    """
    Apply `delta` to a shared counter with a compare-and-swap loop.

    - read() returns the current stored value.
    - swap(expected, new) performs the conditional update, returning True
      when it won.
    - When `floor` is given and current + delta would drop below it, the
      loop stops and returns None (the guarded "decrement-if-sufficient").

    Returns (previous, new) on success. Raises PersistenceError when every
    attempt lost a race.
    """
    for _ in range(attempts):
        current = read()
        new = current + delta
        if floor is not None and new < floor:
            return None
        if swap(current, new):
            return current, new
    raise PersistenceError(
        f"Counter update lost {attempts} consecutive races",
        details={"delta": delta},
    )


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RETRYABLE_ERRORS) or isinstance(exc.__cause__, RETRYABLE_ERRORS)


def run_with_retry(func, *, session=None, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (database locked) and StaleDataError
    (version_id conflicts on versioned rows), also when the repository has
    already wrapped them in PersistenceError.
    """
    session = session or db.session
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            if not _is_retryable(exc):
                raise
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
