from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2
import psycopg2.errors
import psycopg2.extensions

from domain.errors import FatalStoreError, StoreError, TransientStoreError


log = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_MS = 5000

_TRANSIENT_ERRORS = (
    psycopg2.errors.DeadlockDetected,
    psycopg2.errors.LockNotAvailable,
    psycopg2.errors.SerializationFailure,
    psycopg2.errors.QueryCanceled,
)


def translate_error(exc: psycopg2.Error) -> StoreError:
    if isinstance(exc, _TRANSIENT_ERRORS):
        return TransientStoreError(f"Postgres lock wait failed: {exc}")
    if isinstance(exc, psycopg2.ProgrammingError):
        return FatalStoreError(f"Postgres schema error: {exc}")
    if isinstance(exc, psycopg2.OperationalError):
        # Covers dropped connections and a server that is restarting.
        return TransientStoreError(f"Postgres unavailable: {exc}")
    return StoreError(f"Postgres error: {exc}")


@contextmanager
def transaction(
    db_params: dict,
    lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
) -> Iterator[psycopg2.extensions.cursor]:
    """
    Yield a cursor inside one transaction on a fresh connection.

    `with conn:` commits when the block succeeds and rolls back on any
    exception; the connection itself is always closed afterwards.
    `lock_timeout` bounds every `FOR UPDATE` wait in the block.
    """

    try:
        conn = psycopg2.connect(**db_params)
    except psycopg2.Error as exc:
        raise translate_error(exc) from exc

    try:
        with conn:
            with conn.cursor() as cur:
                cur.execute("SET LOCAL lock_timeout = %s", (f"{int(lock_timeout_ms)}ms",))
                yield cur
    except psycopg2.Error as exc:
        raise translate_error(exc) from exc
    finally:
        conn.close()
