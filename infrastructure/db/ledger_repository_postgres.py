from __future__ import annotations

import logging
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
from infrastructure.db.postgres_connection import DEFAULT_LOCK_TIMEOUT_MS, transaction


log = logging.getLogger(__name__)


class PostgresLedgerRepository(LedgerRepository):
    """
    Postgres-backed implementation of `LedgerRepository`.

    Balance rows are locked with `SELECT ... FOR UPDATE` before they are
    checked. Transfers lock both rows in one statement ordered by primary
    key, so two transfers between the same pair of users in opposite
    directions always acquire their locks in the same order.
    """

    def __init__(
        self,
        db_params: dict,
        catalog: Iterable[Tuple[str, int]] = DEFAULT_CATALOG,
        lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
    ) -> None:
        self._db_params = db_params
        self._lock_timeout_ms = lock_timeout_ms
        self._ensure_tables(list(catalog))

    def _ensure_tables(self, catalog: List[Tuple[str, int]]) -> None:
        """
        Create the ledger tables and seed the merch catalog.

        Schema (minimal):
          - merch_items(id, name UNIQUE, price > 0)
          - user_inventory(user_id, item_id) -> quantity >= 0
          - coin_transactions(id, sender_id, receiver_id, amount > 0, created_at)
        """

        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS merch_items (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    price INTEGER NOT NULL CHECK (price > 0)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS user_inventory (
                    user_id INTEGER NOT NULL REFERENCES users (id),
                    item_id INTEGER NOT NULL REFERENCES merch_items (id),
                    quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
                    PRIMARY KEY (user_id, item_id)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS coin_transactions (
                    id BIGSERIAL PRIMARY KEY,
                    sender_id INTEGER NOT NULL REFERENCES users (id),
                    receiver_id INTEGER NOT NULL REFERENCES users (id),
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            cur.executemany(
                """
                INSERT INTO merch_items (name, price)
                VALUES (%s, %s)
                ON CONFLICT (name) DO NOTHING
                """,
                catalog,
            )

    @staticmethod
    def _to_item(row: tuple) -> MerchItem:
        return MerchItem(id=int(row[0]), name=row[1], price=int(row[2]))

    def transfer_coins(self, sender: str, receiver: str, amount: int) -> None:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                """
                SELECT id, username, coins
                FROM users
                WHERE username IN (%s, %s)
                ORDER BY id
                FOR UPDATE
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

            cur.execute(
                "UPDATE users SET coins = coins - %s WHERE id = %s",
                (amount, sender_id),
            )
            cur.execute(
                "UPDATE users SET coins = coins + %s WHERE id = %s",
                (amount, receiver_id),
            )
            cur.execute(
                """
                INSERT INTO coin_transactions (sender_id, receiver_id, amount)
                VALUES (%s, %s, %s)
                """,
                (sender_id, receiver_id, amount),
            )

        log.debug("Committed transfer of %s coins from %s to %s", amount, sender, receiver)

    def buy_item(self, username: str, item_name: str) -> MerchItem:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            # The catalog is static, so the item row is read without a lock.
            cur.execute(
                "SELECT id, name, price FROM merch_items WHERE name = %s",
                (item_name,),
            )
            row = cur.fetchone()
            if not row:
                raise ItemNotFoundError(item_name)
            item = self._to_item(row)

            cur.execute(
                "SELECT id, coins FROM users WHERE username = %s FOR UPDATE",
                (username,),
            )
            row = cur.fetchone()
            if not row:
                raise UserNotFoundError(username)
            user_id, coins = int(row[0]), int(row[1])
            if coins < item.price:
                raise InsufficientCoinsError(username, coins, item.price)

            cur.execute(
                "UPDATE users SET coins = coins - %s WHERE id = %s",
                (item.price, user_id),
            )
            cur.execute(
                """
                INSERT INTO user_inventory (user_id, item_id, quantity)
                VALUES (%s, %s, 1)
                ON CONFLICT (user_id, item_id)
                DO UPDATE SET quantity = user_inventory.quantity + 1
                """,
                (user_id, item.id),
            )

        log.debug("Committed purchase of %s by %s", item.name, username)
        return item

    def get_item(self, item_name: str) -> Optional[MerchItem]:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                "SELECT id, name, price FROM merch_items WHERE name = %s",
                (item_name,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_item(row)

    def list_items(self) -> List[MerchItem]:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute("SELECT id, name, price FROM merch_items ORDER BY id")
            return [self._to_item(row) for row in cur.fetchall()]

    def get_user_inventory(self, user_id: int) -> List[InventoryItem]:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                """
                SELECT m.name, COALESCE(ui.quantity, 0)
                FROM merch_items m
                LEFT JOIN user_inventory ui ON m.id = ui.item_id AND ui.user_id = %s
                ORDER BY m.id
                """,
                (user_id,),
            )
            items = [InventoryItem(type=row[0], quantity=int(row[1])) for row in cur.fetchall()]
        return [item for item in items if item.quantity > 0]

    def get_coin_history(self, user_id: int) -> CoinHistory:
        with transaction(self._db_params, self._lock_timeout_ms) as cur:
            cur.execute(
                """
                SELECT u.username, ct.amount
                FROM coin_transactions ct
                JOIN users u ON ct.sender_id = u.id
                WHERE ct.receiver_id = %s
                ORDER BY ct.id
                """,
                (user_id,),
            )
            received = [
                ReceivedTransaction(from_user=row[0], amount=int(row[1]))
                for row in cur.fetchall()
            ]

            cur.execute(
                """
                SELECT u.username, ct.amount
                FROM coin_transactions ct
                JOIN users u ON ct.receiver_id = u.id
                WHERE ct.sender_id = %s
                ORDER BY ct.id
                """,
                (user_id,),
            )
            sent = [
                SentTransaction(to_user=row[0], amount=int(row[1]))
                for row in cur.fetchall()
            ]

        return CoinHistory(received=received, sent=sent)
