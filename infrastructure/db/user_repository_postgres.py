from __future__ import annotations

from typing import Optional

import psycopg2.errors

from domain.errors import ConflictError
from domain.models import User
from domain.repositories import UserRepository
from infrastructure.db.postgres_connection import DEFAULT_LOCK_TIMEOUT_MS, transaction


class PostgresUserRepository(UserRepository):
    """
    Postgres-backed implementation of `UserRepository`.

    Owns the `users` table. The unique index on `username` is what settles
    concurrent first logins: the losing insert fails with a unique violation
    and surfaces as `ConflictError`.
    """

    def __init__(self, db_params: dict, lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS) -> None:
        self._db_params = db_params
        self._lock_timeout_ms = lock_timeout_ms
        self._ensure_table()

    def _ensure_table(self) -> None:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    coins INTEGER NOT NULL DEFAULT 0 CHECK (coins >= 0)
                )
                """
            )

    @staticmethod
    def _to_domain(row: tuple) -> User:
        return User(
            id=int(row[0]),
            username=row[1],
            password_hash=row[2],
            coins=int(row[3]),
        )

    def get_by_username(self, username: str) -> Optional[User]:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                "SELECT id, username, password_hash, coins FROM users WHERE username = %s",
                (username,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def create_user(self, username: str, password_hash: str, coins: int) -> User:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            try:
                cur.execute(
                    """
                    INSERT INTO users (username, password_hash, coins)
                    VALUES (%s, %s, %s)
                    RETURNING id, username, password_hash, coins
                    """,
                    (username, password_hash, coins),
                )
            except psycopg2.errors.UniqueViolation as exc:
                raise ConflictError(username) from exc
            return self._to_domain(cur.fetchone())
