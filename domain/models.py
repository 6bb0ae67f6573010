from dataclasses import dataclass, field
from typing import List


@dataclass
class User:
    """
    Domain representation of a shop customer and their coin balance.

    This model is intentionally simple and independent of any
    particular transport (HTTP, CLI) or database schema.
    """

    id: int
    username: str
    password_hash: str
    coins: int


@dataclass
class MerchItem:
    """Catalog entry. Prices are whole coins and always positive."""

    id: int
    name: str
    price: int


@dataclass
class InventoryItem:
    type: str
    quantity: int


@dataclass
class ReceivedTransaction:
    from_user: str
    amount: int


@dataclass
class SentTransaction:
    to_user: str
    amount: int


@dataclass
class CoinHistory:
    """
    A user's view of the transaction log, split by direction.

    Both lists are ordered oldest-first, following the insertion order of
    the `coin_transactions` table.
    """

    received: List[ReceivedTransaction] = field(default_factory=list)
    sent: List[SentTransaction] = field(default_factory=list)
