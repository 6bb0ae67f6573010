from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from application.services import ShopPolicy


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _get_int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {value}")
    return value


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean, got {raw!r}")


@dataclass
class Settings:
    """
    Process configuration read from the environment (and `.env`, if present).

    `db_backend` selects between the SQLite file at `db_path` and the
    Postgres server described by the `DATABASE_*` variables.
    """

    db_backend: str = "sqlite"
    db_path: str = "shop.db"
    db_user: str = ""
    db_password: str = ""
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "shop"
    initial_coins: int = 1000
    allow_self_transfer: bool = False
    lock_timeout_ms: int = 5000
    transient_retries: int = 3
    retry_backoff_seconds: float = 0.05
    bcrypt_rounds: int = 12
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        if env is None:
            load_dotenv()
            env = os.environ

        backend = env.get("SHOP_DB_BACKEND", "sqlite").strip().lower()
        if backend not in ("sqlite", "postgres"):
            raise ValueError(f"SHOP_DB_BACKEND must be 'sqlite' or 'postgres', got {backend!r}")

        return cls(
            db_backend=backend,
            db_path=env.get("DB_PATH", "shop.db"),
            db_user=env.get("DATABASE_USER", ""),
            db_password=env.get("DATABASE_PASSWORD", ""),
            db_host=env.get("DATABASE_HOST", "localhost"),
            db_port=_get_int(env, "DATABASE_PORT", 5432, minimum=1),
            db_name=env.get("DATABASE_NAME", "shop"),
            initial_coins=_get_int(env, "SHOP_INITIAL_COINS", 1000),
            allow_self_transfer=_get_bool(env, "SHOP_ALLOW_SELF_TRANSFER", False),
            lock_timeout_ms=_get_int(env, "SHOP_LOCK_TIMEOUT_MS", 5000, minimum=1),
            transient_retries=_get_int(env, "SHOP_TRANSIENT_RETRIES", 3, minimum=1),
            retry_backoff_seconds=_get_float(env, "SHOP_RETRY_BACKOFF_SECONDS", 0.05),
            bcrypt_rounds=_get_int(env, "SHOP_BCRYPT_ROUNDS", 12, minimum=4),
            host=env.get("SHOP_HOST", "0.0.0.0"),
            port=_get_int(env, "SHOP_PORT", 8080, minimum=1),
            log_level=env.get("SHOP_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def db_params(self) -> dict:
        """Keyword arguments for `psycopg2.connect`."""

        return {
            "user": self.db_user,
            "password": self.db_password,
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
        }

    def policy(self) -> ShopPolicy:
        return ShopPolicy(
            initial_coins=self.initial_coins,
            allow_self_transfer=self.allow_self_transfer,
            transient_retries=self.transient_retries,
            retry_backoff_seconds=self.retry_backoff_seconds,
            bcrypt_rounds=self.bcrypt_rounds,
        )
