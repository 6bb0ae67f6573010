from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, List, Optional, Tuple

from domain.catalog import DEFAULT_CATALOG
from domain.errors import InsufficientCoinsError, ItemNotFoundError, UserNotFoundError
from domain.models import (
    CoinHistory,
    InventoryItem,
    MerchItem,
    ReceivedTransaction,
    SentTransaction,
)
from domain.repositories import LedgerRepository
from infrastructure.db.sqlite_connection import (
    DEFAULT_LOCK_TIMEOUT_MS,
    read_connection,
    write_transaction,
)


log = logging.getLogger(__name__)


class SqliteLedgerRepository(LedgerRepository):
    """
    SQLite-backed implementation of `LedgerRepository`.

    Owns the `merch_items`, `user_inventory` and `coin_transactions` tables
    and seeds the merch catalog. The `users` table belongs to
    `SqliteUserRepository`, which must be created against the same file.

    Every mutation runs inside `write_transaction`, so balance checks and
    balance updates see no interleaved writer.
    """

    def __init__(
        self,
        db_path: str,
        catalog: Iterable[Tuple[str, int]] = DEFAULT_CATALOG,
        lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
    ) -> None:
        self._db_path = db_path
        self._lock_timeout_ms = lock_timeout_ms
        self._ensure_tables(list(catalog))

    def _ensure_tables(self, catalog: List[Tuple[str, int]]) -> None:
        with write_transaction(self._db_path, self._lock_timeout_ms) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS merch_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    price INTEGER NOT NULL CHECK (price > 0)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_inventory (
                    user_id INTEGER NOT NULL REFERENCES users (id),
                    item_id INTEGER NOT NULL REFERENCES merch_items (id),
                    quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
                    PRIMARY KEY (user_id, item_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS coin_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sender_id INTEGER NOT NULL REFERENCES users (id),
                    receiver_id INTEGER NOT NULL REFERENCES users (id),
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.executemany(
                """
                INSERT INTO merch_items (name, price)
                VALUES (?, ?)
                ON CONFLICT (name) DO NOTHING
                """,
                catalog,
            )

    @staticmethod
    def _to_item(row: sqlite3.Row) -> MerchItem:
        return MerchItem(id=int(row[0]), name=row[1], price=int(row[2]))

    def transfer_coins(self, sender: str, receiver: str, amount: int) -> None:
        with write_transaction(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute(
                """
                SELECT id, username, coins
                FROM users
                WHERE username IN (?, ?)
                ORDER BY id
                """,
                (sender, receiver),
            )
            accounts = {row[1]: (int(row[0]), int(row[2])) for row in cur.fetchall()}

            if sender not in accounts:
                raise UserNotFoundError(sender)
            sender_id, sender_coins = accounts[sender]
            if sender_coins < amount:
                raise InsufficientCoinsError(sender, sender_coins, amount)
            if receiver not in accounts:
                raise UserNotFoundError(receiver)
            receiver_id, _ = accounts[receiver]

            conn.execute(
                "UPDATE users SET coins = coins - ? WHERE id = ?",
                (amount, sender_id),
            )
            conn.execute(
                "UPDATE users SET coins = coins + ? WHERE id = ?",
                (amount, receiver_id),
            )
            conn.execute(
                """
                INSERT INTO coin_transactions (sender_id, receiver_id, amount)
                VALUES (?, ?, ?)
                """,
                (sender_id, receiver_id, amount),
            )

        log.debug("Committed transfer of %s coins from %s to %s", amount, sender, receiver)

    def buy_item(self, username: str, item_name: str) -> MerchItem:
        with write_transaction(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute(
                "SELECT id, name, price FROM merch_items WHERE name = ?",
                (item_name,),
            )
            row = cur.fetchone()
            if not row:
                raise ItemNotFoundError(item_name)
            item = self._to_item(row)

            cur = conn.execute(
                "SELECT id, coins FROM users WHERE username = ?",
                (username,),
            )
            row = cur.fetchone()
            if not row:
                raise UserNotFoundError(username)
            user_id, coins = int(row[0]), int(row[1])
            if coins < item.price:
                raise InsufficientCoinsError(username, coins, item.price)

            conn.execute(
                "UPDATE users SET coins = coins - ? WHERE id = ?",
                (item.price, user_id),
            )
            conn.execute(
                """
                INSERT INTO user_inventory (user_id, item_id, quantity)
                VALUES (?, ?, 1)
                ON CONFLICT (user_id, item_id)
                DO UPDATE SET quantity = user_inventory.quantity + 1
                """,
                (user_id, item.id),
            )

        log.debug("Committed purchase of %s by %s", item.name, username)
        return item

    def get_item(self, item_name: str) -> Optional[MerchItem]:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute(
                "SELECT id, name, price FROM merch_items WHERE name = ?",
                (item_name,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_item(row)

    def list_items(self) -> List[MerchItem]:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute("SELECT id, name, price FROM merch_items ORDER BY id")
            return [self._to_item(row) for row in cur.fetchall()]

    def get_user_inventory(self, user_id: int) -> List[InventoryItem]:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute(
                """
                SELECT m.name, COALESCE(ui.quantity, 0)
                FROM merch_items m
                LEFT JOIN user_inventory ui ON m.id = ui.item_id AND ui.user_id = ?
                ORDER BY m.id
                """,
                (user_id,),
            )
            items = [InventoryItem(type=row[0], quantity=int(row[1])) for row in cur.fetchall()]
        return [item for item in items if item.quantity > 0]

    def get_coin_history(self, user_id: int) -> CoinHistory:
        with read_connection(self._db_path, self._lock_timeout_ms) as conn:
            cur = conn.execute(
                """
                SELECT u.username, ct.amount
                FROM coin_transactions ct
                JOIN users u ON ct.sender_id = u.id
                WHERE ct.receiver_id = ?
                ORDER BY ct.id
                """,
                (user_id,),
            )
            received = [
                ReceivedTransaction(from_user=row[0], amount=int(row[1]))
                for row in cur.fetchall()
            ]

            cur = conn.execute(
                """
                SELECT u.username, ct.amount
                FROM coin_transactions ct
                JOIN users u ON ct.receiver_id = u.id
                WHERE ct.sender_id = ?
                ORDER BY ct.id
                """,
                (user_id,),
            )
            sent = [
                SentTransaction(to_user=row[0], amount=int(row[1]))
                for row in cur.fetchall()
            ]

        return CoinHistory(received=received, sent=sent)
