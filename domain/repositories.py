from __future__ import annotations

from typing import List, Optional, Protocol

from .models import CoinHistory, InventoryItem, MerchItem, User


class UserRepository(Protocol):
    """
    Abstraction over account persistence.

    Implementations are responsible for:
    - Mapping between database rows and the `User` domain model.
    - Hiding any SQL / driver details from the application layer.
    - Translating driver errors into `domain.errors.StoreError` subclasses.
    """

    def get_by_username(self, username: str) -> Optional[User]:
        """Return the user with the given username, or None if not found."""

        ...

    def create_user(self, username: str, password_hash: str, coins: int) -> User:
        """
        Persist a new user with a starting balance of `coins`.

        Raises `ConflictError` when the username is taken. Uniqueness must be
        enforced by the store so that concurrent first logins for the same
        username create exactly one row.
        """

        ...


class LedgerRepository(Protocol):
    """
    The coin-affecting operations and the reads that report on them.

    Every mutating method runs as exactly one store transaction: either all
    of its effects are committed or none are.
    """

    def transfer_coins(self, sender: str, receiver: str, amount: int) -> None:
        """
        Move `amount` coins from `sender` to `receiver` and log the transfer.

        Both account rows are locked in ascending primary-key order before the
        balance check. Raises `UserNotFoundError` or `InsufficientCoinsError`.
        """

        ...

    def buy_item(self, username: str, item_name: str) -> MerchItem:
        """
        Debit the item's price from `username` and add one to their inventory.

        Raises `ItemNotFoundError`, `UserNotFoundError` or
        `InsufficientCoinsError`. Returns the purchased catalog item.
        """

        ...

    def get_item(self, item_name: str) -> Optional[MerchItem]:
        ...

    def list_items(self) -> List[MerchItem]:
        ...

    def get_user_inventory(self, user_id: int) -> List[InventoryItem]:
        """Return owned items only; zero quantities are filtered out."""

        ...

    def get_coin_history(self, user_id: int) -> CoinHistory:
        ...


class SessionRepository(Protocol):
    """
    Maps opaque bearer tokens to usernames.

    The application layer issues tokens; this abstraction only stores them.
    """

    def create_session(self, token: str, username: str) -> None:
        ...

    def find_username(self, token: str) -> Optional[str]:
        """Return the username the token was issued to, if any."""

        ...

    def delete_session(self, token: str) -> None:
        ...
