from __future__ import annotations

from typing import Optional

from domain.repositories import SessionRepository
from infrastructure.db.sqlite_connection import (
    DEFAULT_LOCK_TIMEOUT_MS,
    read_connection,
    write_transaction,
)


class SqliteSessionRepository(SessionRepository):
    """
    SQLite-backed implementation of `SessionRepository`.

    Stores bearer tokens in a `sessions` table keyed by the token itself.
    """

    def __init__(self, db_path: str, lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS) -> None:
        self._db_path = db_path
        self._lock_timeout_ms = lock_timeout_ms
        self._ensure_table()

    def _ensure_table(self) -> None:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    token TEXT PRIMARY KEY,
                    username TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def create_session(self, token: str, username: str) -> None:
        with write_transaction(self._db_path, self._lock_timeout_ms) as conn:
            conn.execute(
                """
                INSERT INTO sessions (token, username)
                VALUES (?, ?)
                ON CONFLICT (token)
                DO UPDATE SET username = excluded.username
                """,
                (token, username),
            )

    def find_username(self, token: str) -> Optional[str]:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute(
                "SELECT username FROM sessions WHERE token = ?",
                (token,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return str(row[0])

    def delete_session(self, token: str) -> None:
        with write_transaction(self._db_path, self._lock_timeout_ms) as conn:
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
