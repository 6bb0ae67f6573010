from __future__ import annotations

from typing import Optional

from domain.repositories import SessionRepository
from infrastructure.db.postgres_connection import DEFAULT_LOCK_TIMEOUT_MS, transaction


class PostgresSessionRepository(SessionRepository):
    """
    Postgres-backed implementation of `SessionRepository`.

    Uses a dedicated `sessions` table mapping bearer tokens to the
    usernames stored in `users`.
    """

    def __init__(self, db_params: dict, lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS) -> None:
        self._db_params = db_params
        self._lock_timeout_ms = lock_timeout_ms
        self._ensure_table()

    def _ensure_table(self) -> None:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    token TEXT PRIMARY KEY,
                    username TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    def create_session(self, token: str, username: str) -> None:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                """
                INSERT INTO sessions (token, username)
                VALUES (%s, %s)
                ON CONFLICT (token)
                DO UPDATE SET username = excluded.username
                """,
                (token, username),
            )

    def find_username(self, token: str) -> Optional[str]:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                "SELECT username FROM sessions WHERE token = %s",
                (token,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return str(row[0])

    def delete_session(self, token: str) -> None:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute("DELETE FROM sessions WHERE token = %s", (token,))
