import os
import random
import sqlite3
import tempfile
import threading
import unittest

from domain.errors import (
    ConflictError,
    FatalStoreError,
    InsufficientCoinsError,
    ItemNotFoundError,
    StoreError,
    TransientStoreError,
    UserNotFoundError,
)
from domain.models import InventoryItem, MerchItem, ReceivedTransaction, SentTransaction
from infrastructure.db.ledger_repository_sqlite import SqliteLedgerRepository
from infrastructure.db.session_repository_sqlite import SqliteSessionRepository
from infrastructure.db.sqlite_connection import translate_error, write_transaction
from infrastructure.db.user_repository_sqlite import SqliteUserRepository


def run_concurrently(*funcs):
    """Start every callable at the same moment and collect results or exceptions."""

    barrier = threading.Barrier(len(funcs))
    outcomes = [None] * len(funcs)

    def worker(index, func):
        barrier.wait()
        try:
            outcomes[index] = func()
        except Exception as exc:
            outcomes[index] = exc

    threads = [threading.Thread(target=worker, args=(i, f)) for i, f in enumerate(funcs)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


class SqliteRepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmp.name, "shop.db")
        self.user_repo = SqliteUserRepository(self.db_path)
        self.ledger_repo = SqliteLedgerRepository(self.db_path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def coins(self, username: str) -> int:
        return self.user_repo.get_by_username(username).coins

    def total_coins(self) -> int:
        with sqlite3.connect(self.db_path) as conn:
            return conn.execute("SELECT SUM(coins) FROM users").fetchone()[0]


class SqliteUserRepositoryTests(SqliteRepositoryTestCase):
    def test_create_and_get_user(self):
        created = self.user_repo.create_user("alice", "hash", 1000)
        fetched = self.user_repo.get_by_username("alice")
        self.assertEqual(created, fetched)
        self.assertEqual(fetched.coins, 1000)

    def test_get_unknown_user_returns_none(self):
        self.assertIsNone(self.user_repo.get_by_username("ghost"))

    def test_duplicate_username_conflicts(self):
        self.user_repo.create_user("alice", "hash", 1000)
        with self.assertRaises(ConflictError):
            self.user_repo.create_user("alice", "other", 1000)
        self.assertEqual(self.user_repo.get_by_username("alice").password_hash, "hash")

    def test_concurrent_creates_yield_one_row(self):
        outcomes = run_concurrently(
            *[lambda: self.user_repo.create_user("alice", "hash", 1000) for _ in range(4)]
        )
        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        self.assertEqual(len(conflicts), 3)
        with sqlite3.connect(self.db_path) as conn:
            count = conn.execute("SELECT COUNT(*) FROM users WHERE username = 'alice'").fetchone()[0]
        self.assertEqual(count, 1)

    def test_negative_balance_is_rejected_by_schema(self):
        with self.assertRaises(StoreError):
            self.user_repo.create_user("alice", "hash", -1)


class SqliteTransferTests(SqliteRepositoryTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice = self.user_repo.create_user("alice", "hash", 1000)
        self.bob = self.user_repo.create_user("bob", "hash", 1000)

    def test_transfer_moves_coins(self):
        self.ledger_repo.transfer_coins("alice", "bob", 200)
        self.assertEqual(self.coins("alice"), 800)
        self.assertEqual(self.coins("bob"), 1200)

    def test_history_completeness(self):
        self.ledger_repo.transfer_coins("alice", "bob", 200)

        alice_history = self.ledger_repo.get_coin_history(self.alice.id)
        bob_history = self.ledger_repo.get_coin_history(self.bob.id)
        self.assertEqual(alice_history.sent, [SentTransaction(to_user="bob", amount=200)])
        self.assertEqual(alice_history.received, [])
        self.assertEqual(bob_history.received, [ReceivedTransaction(from_user="alice", amount=200)])
        self.assertEqual(bob_history.sent, [])

    def test_history_is_oldest_first(self):
        for amount in (30, 10, 20):
            self.ledger_repo.transfer_coins("alice", "bob", amount)
        history = self.ledger_repo.get_coin_history(self.alice.id)
        self.assertEqual([t.amount for t in history.sent], [30, 10, 20])

    def test_insufficient_coins_leaves_balances_unchanged(self):
        with self.assertRaises(InsufficientCoinsError):
            self.ledger_repo.transfer_coins("alice", "bob", 1001)
        self.assertEqual(self.coins("alice"), 1000)
        self.assertEqual(self.coins("bob"), 1000)
        self.assertEqual(self.ledger_repo.get_coin_history(self.alice.id).sent, [])

    def test_unknown_sender(self):
        with self.assertRaises(UserNotFoundError) as ctx:
            self.ledger_repo.transfer_coins("ghost", "bob", 10)
        self.assertEqual(ctx.exception.username, "ghost")
        self.assertEqual(self.coins("bob"), 1000)

    def test_unknown_receiver_leaves_sender_unchanged(self):
        with self.assertRaises(UserNotFoundError) as ctx:
            self.ledger_repo.transfer_coins("alice", "ghost", 10)
        self.assertEqual(ctx.exception.username, "ghost")
        self.assertEqual(self.coins("alice"), 1000)

    def test_self_transfer_is_balance_no_op(self):
        self.ledger_repo.transfer_coins("alice", "alice", 100)
        self.assertEqual(self.coins("alice"), 1000)
        history = self.ledger_repo.get_coin_history(self.alice.id)
        self.assertEqual(history.sent, [SentTransaction(to_user="alice", amount=100)])

    def test_concurrent_transfers_cannot_double_spend(self):
        self.user_repo.create_user("carol", "hash", 100)

        outcomes = run_concurrently(
            lambda: self.ledger_repo.transfer_coins("carol", "alice", 60),
            lambda: self.ledger_repo.transfer_coins("carol", "bob", 60),
        )

        successes = [o for o in outcomes if o is None]
        failures = [o for o in outcomes if isinstance(o, InsufficientCoinsError)]
        self.assertEqual(len(successes), 1, outcomes)
        self.assertEqual(len(failures), 1, outcomes)
        self.assertEqual(self.coins("carol"), 40)
        self.assertEqual(self.coins("alice") + self.coins("bob"), 2060)

    def test_reciprocal_transfers_complete(self):
        outcomes = run_concurrently(
            *[lambda: self.ledger_repo.transfer_coins("alice", "bob", 1) for _ in range(10)],
            *[lambda: self.ledger_repo.transfer_coins("bob", "alice", 1) for _ in range(10)],
        )
        self.assertTrue(all(o is None for o in outcomes), outcomes)
        self.assertEqual(self.coins("alice"), 1000)
        self.assertEqual(self.coins("bob"), 1000)

    def test_conservation_under_concurrent_transfers(self):
        names = ["alice", "bob"]
        for name in ("carol", "dave"):
            self.user_repo.create_user(name, "hash", 50)
            names.append(name)
        before = self.total_coins()

        rng = random.Random(1234)
        jobs = []
        for _ in range(40):
            sender, receiver = rng.sample(names, 2)
            amount = rng.randint(1, 120)
            jobs.append(lambda s=sender, r=receiver, a=amount: self.ledger_repo.transfer_coins(s, r, a))

        outcomes = run_concurrently(*jobs)
        for outcome in outcomes:
            self.assertTrue(outcome is None or isinstance(outcome, InsufficientCoinsError), outcome)

        self.assertEqual(self.total_coins(), before)
        for name in names:
            self.assertGreaterEqual(self.coins(name), 0)


class SqlitePurchaseTests(SqliteRepositoryTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.alice = self.user_repo.create_user("alice", "hash", 1000)

    def test_catalog_is_seeded_once(self):
        SqliteLedgerRepository(self.db_path)
        items = self.ledger_repo.list_items()
        self.assertEqual(len(items), 10)
        self.assertEqual(self.ledger_repo.get_item("t-shirt").price, 80)
        self.assertIsNone(self.ledger_repo.get_item("yacht"))

    def test_buy_item(self):
        item = self.ledger_repo.buy_item("alice", "t-shirt")
        self.assertEqual(item.name, "t-shirt")
        self.assertEqual(self.coins("alice"), 920)
        self.assertEqual(
            self.ledger_repo.get_user_inventory(self.alice.id),
            [InventoryItem(type="t-shirt", quantity=1)],
        )

    def test_repeat_purchase_accumulates(self):
        self.ledger_repo.buy_item("alice", "cup")
        self.ledger_repo.buy_item("alice", "cup")
        self.assertEqual(
            self.ledger_repo.get_user_inventory(self.alice.id),
            [InventoryItem(type="cup", quantity=2)],
        )
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("SELECT COUNT(*) FROM user_inventory").fetchone()[0]
        self.assertEqual(rows, 1)

    def test_empty_inventory(self):
        self.assertEqual(self.ledger_repo.get_user_inventory(self.alice.id), [])

    def test_unknown_item(self):
        with self.assertRaises(ItemNotFoundError):
            self.ledger_repo.buy_item("alice", "yacht")
        self.assertEqual(self.coins("alice"), 1000)

    def test_unknown_buyer(self):
        with self.assertRaises(UserNotFoundError):
            self.ledger_repo.buy_item("ghost", "pen")

    def test_insufficient_coins_leaves_inventory_unchanged(self):
        self.user_repo.create_user("bob", "hash", 100)
        bob = self.user_repo.get_by_username("bob")
        with self.assertRaises(InsufficientCoinsError):
            self.ledger_repo.buy_item("bob", "pink-hoody")
        self.assertEqual(self.coins("bob"), 100)
        self.assertEqual(self.ledger_repo.get_user_inventory(bob.id), [])

    def test_concurrent_purchases_of_new_item(self):
        outcomes = run_concurrently(
            *[lambda: self.ledger_repo.buy_item("alice", "book") for _ in range(5)]
        )
        self.assertTrue(all(isinstance(o, MerchItem) and o.name == "book" for o in outcomes), outcomes)
        self.assertEqual(self.coins("alice"), 750)
        self.assertEqual(
            self.ledger_repo.get_user_inventory(self.alice.id),
            [InventoryItem(type="book", quantity=5)],
        )

    def test_concurrent_purchases_never_overdraw(self):
        self.user_repo.create_user("bob", "hash", 500)
        bob = self.user_repo.get_by_username("bob")
        outcomes = run_concurrently(
            *[lambda: self.ledger_repo.buy_item("bob", "hoody") for _ in range(3)]
        )
        bought = [o for o in outcomes if not isinstance(o, Exception)]
        refused = [o for o in outcomes if isinstance(o, InsufficientCoinsError)]
        self.assertEqual(len(bought), 1)
        self.assertEqual(len(refused), 2)
        self.assertEqual(self.coins("bob"), 200)
        self.assertEqual(
            self.ledger_repo.get_user_inventory(bob.id),
            [InventoryItem(type="hoody", quantity=1)],
        )


class SqliteSessionRepositoryTests(SqliteRepositoryTestCase):
    def test_session_lifecycle(self):
        sessions = SqliteSessionRepository(self.db_path)
        self.assertIsNone(sessions.find_username("token"))

        sessions.create_session("token", "alice")
        self.assertEqual(sessions.find_username("token"), "alice")

        sessions.delete_session("token")
        self.assertIsNone(sessions.find_username("token"))


class SqliteConnectionTests(SqliteRepositoryTestCase):
    def test_exception_inside_transaction_rolls_back(self):
        self.user_repo.create_user("alice", "hash", 1000)

        with self.assertRaises(RuntimeError):
            with write_transaction(self.db_path) as conn:
                conn.execute("UPDATE users SET coins = 0 WHERE username = 'alice'")
                raise RuntimeError("request cancelled")

        self.assertEqual(self.coins("alice"), 1000)

    def test_lock_timeout_is_transient(self):
        blocker = sqlite3.connect(self.db_path, isolation_level=None)
        try:
            blocker.execute("BEGIN IMMEDIATE")
            with self.assertRaises(TransientStoreError):
                with write_transaction(self.db_path, lock_timeout_ms=50):
                    pass
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

    def test_missing_table_is_fatal(self):
        error = translate_error(sqlite3.OperationalError("no such table: users"))
        self.assertIsInstance(error, FatalStoreError)

    def test_locked_database_is_transient(self):
        error = translate_error(sqlite3.OperationalError("database is locked"))
        self.assertIsInstance(error, TransientStoreError)


if __name__ == "__main__":
    unittest.main()
