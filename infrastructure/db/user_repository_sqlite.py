from __future__ import annotations

import sqlite3
from typing import Optional

from domain.errors import ConflictError
from domain.models import User
from domain.repositories import UserRepository
from infrastructure.db.sqlite_connection import (
    DEFAULT_LOCK_TIMEOUT_MS,
    read_connection,
    write_transaction,
)


class SqliteUserRepository(UserRepository):
    """
    SQLite-backed implementation of `UserRepository`.

    This repository owns the `users` table and maps rows to the `User`
    domain model. It is self-initialising: the table is created if needed.
    """

    def __init__(self, db_path: str, lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS) -> None:
        self._db_path = db_path
        self._lock_timeout_ms = lock_timeout_ms
        self._ensure_table()

    def _ensure_table(self) -> None:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            # WAL lets readers proceed while a transfer holds the write lock.
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    coins INTEGER NOT NULL DEFAULT 0 CHECK (coins >= 0)
                )
                """
            )

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> User:
        return User(
            id=int(row[0]),
            username=row[1],
            password_hash=row[2],
            coins=int(row[3]),
        )

    def get_by_username(self, username: str) -> Optional[User]:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute(
                "SELECT id, username, password_hash, coins FROM users WHERE username = ?",
                (username,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def create_user(self, username: str, password_hash: str, coins: int) -> User:
        with write_transaction(self._db_path, self._lock_timeout_ms) as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO users (username, password_hash, coins)
                    VALUES (?, ?, ?)
                    """,
                    (username, password_hash, coins),
                )
            except sqlite3.IntegrityError as exc:
                if "unique" not in str(exc).lower():
                    raise
                raise ConflictError(username) from exc
            return User(
                id=int(cur.lastrowid),
                username=username,
                password_hash=password_hash,
                coins=coins,
            )
