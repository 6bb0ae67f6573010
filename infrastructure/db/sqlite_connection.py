from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from typing import Iterator

from domain.errors import FatalStoreError, StoreError, TransientStoreError


log = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_MS = 5000


def connect(db_path: str, lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS) -> sqlite3.Connection:
    """
    Open a connection in autocommit mode.

    Transactions are opened explicitly with `BEGIN IMMEDIATE` by
    `write_transaction`; plain reads run outside of any transaction.
    `timeout` bounds how long SQLite waits on another writer's lock.
    """

    conn = sqlite3.connect(
        db_path,
        timeout=lock_timeout_ms / 1000.0,
        isolation_level=None,
    )
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def translate_error(exc: sqlite3.Error) -> StoreError:
    message = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError):
        if "locked" in message or "busy" in message:
            return TransientStoreError(f"SQLite lock wait failed: {exc}")
        if "no such table" in message or "no such column" in message:
            return FatalStoreError(f"SQLite schema is missing: {exc}")
    return StoreError(f"SQLite error: {exc}")


@contextmanager
def write_transaction(
    db_path: str,
    lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
) -> Iterator[sqlite3.Connection]:
    """
    Run the block as one atomic transaction holding the database write lock.

    SQLite has no `SELECT ... FOR UPDATE`; `BEGIN IMMEDIATE` takes the
    reserved lock up front, which makes every read inside the block a locked
    read with respect to other writers. Any exception raised inside the
    block rolls the transaction back before it propagates.
    """

    with closing(connect(db_path, lock_timeout_ms)) as conn:
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            _rollback(conn)
            raise translate_error(exc) from exc
        except BaseException:
            _rollback(conn)
            raise


@contextmanager
def read_connection(
    db_path: str,
    lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
) -> Iterator[sqlite3.Connection]:
    with closing(connect(db_path, lock_timeout_ms)) as conn:
        try:
            yield conn
        except sqlite3.Error as exc:
            raise translate_error(exc) from exc


def _rollback(conn: sqlite3.Connection) -> None:
    if not conn.in_transaction:
        return
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error:
        # Closing the connection discards the transaction.
        log.exception("SQLite rollback failed")
