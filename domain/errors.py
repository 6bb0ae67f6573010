from __future__ import annotations


class ShopError(Exception):
    """Base class for every error raised by the shop core."""


class LedgerError(ShopError):
    """
    A financial operation was refused.

    Raising one of these inside a store transaction aborts it, so the
    caller can rely on zero side effects.
    """


class UserNotFoundError(LedgerError):
    def __init__(self, username: str) -> None:
        super().__init__(f"User '{username}' not found.")
        self.username = username


class ItemNotFoundError(LedgerError):
    def __init__(self, item_name: str) -> None:
        super().__init__(f"Item '{item_name}' not found.")
        self.item_name = item_name


class InsufficientCoinsError(LedgerError):
    def __init__(self, username: str, balance: int, required: int) -> None:
        super().__init__(
            f"User '{username}' has {balance} coins, {required} required."
        )
        self.username = username
        self.balance = balance
        self.required = required


class InvalidAmountError(LedgerError):
    def __init__(self, amount: object) -> None:
        super().__init__("Amount must be a whole number greater than zero.")
        self.amount = amount


class SelfTransferError(LedgerError):
    def __init__(self, username: str) -> None:
        super().__init__("Cannot send coins to yourself.")
        self.username = username


class ConflictError(ShopError):
    """A row with the same unique key already exists (duplicate username)."""

    def __init__(self, username: str) -> None:
        super().__init__(f"User '{username}' already exists.")
        self.username = username


class InvalidRequestError(ShopError):
    pass


class InvalidCredentialsError(ShopError):
    pass


class UnauthorizedError(ShopError):
    pass


class StoreError(ShopError):
    """The underlying database failed; carries the driver exception as `__cause__`."""


class TransientStoreError(StoreError):
    """
    Lock timeout, deadlock or serialization failure.

    The transaction has been rolled back and the whole operation can be
    retried from scratch.
    """


class FatalStoreError(StoreError):
    """Unrecoverable store failure such as a missing table."""
