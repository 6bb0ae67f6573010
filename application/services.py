from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from application.retry import run_with_retry
from application.security import (
    DEFAULT_BCRYPT_ROUNDS,
    hash_password,
    new_session_token,
    verify_password,
)
from domain.errors import (
    ConflictError,
    InvalidAmountError,
    InvalidCredentialsError,
    InvalidRequestError,
    LedgerError,
    SelfTransferError,
    ShopError,
    UnauthorizedError,
    UserNotFoundError,
)
from domain.models import CoinHistory, InventoryItem, User
from domain.repositories import LedgerRepository, SessionRepository, UserRepository


log = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


@dataclass
class ShopPolicy:
    """
    Economic and operational knobs of the shop.

    Built from configuration by the entry point; the defaults match the
    reference deployment.
    """

    initial_coins: int = 1000
    allow_self_transfer: bool = False
    transient_retries: int = 3
    retry_backoff_seconds: float = 0.05
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS


@dataclass
class OperationResult:
    """Generic result type for coin-affecting operations."""

    success: bool
    error_message: Optional[str] = None
    error: Optional[ShopError] = None

    @classmethod
    def failed(cls, error: ShopError) -> "OperationResult":
        return cls(success=False, error_message=str(error), error=error)


@dataclass
class AuthResult:
    success: bool
    token: Optional[str] = None
    user: Optional[User] = None
    created: bool = False
    error_message: Optional[str] = None
    error: Optional[ShopError] = None


@dataclass
class InfoResult:
    """Everything the caller sees about their own account."""

    success: bool
    coins: int = 0
    inventory: List[InventoryItem] = field(default_factory=list)
    coin_history: CoinHistory = field(default_factory=CoinHistory)
    error_message: Optional[str] = None
    error: Optional[ShopError] = None


def _validate_amount(amount: object) -> int:
    # bool is an int subclass; True must not be accepted as one coin.
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


def _retrying(policy: ShopPolicy, func):
    return run_with_retry(
        func,
        attempts=policy.transient_retries,
        backoff_base=policy.retry_backoff_seconds,
    )


def get_user(username: str, user_repo: UserRepository) -> Optional[User]:
    return user_repo.get_by_username(username)


def create_user(
    username: str,
    password: str,
    user_repo: UserRepository,
    policy: ShopPolicy,
) -> User:
    """
    Create an account seeded with `policy.initial_coins`.

    Raises `ConflictError` if the username is taken.
    """

    password_hash = hash_password(password, policy.bcrypt_rounds)
    user = user_repo.create_user(username, password_hash, policy.initial_coins)
    log.info("Created user %s with %d coins", username, user.coins)
    return user


def authenticate(
    username: str,
    password: str,
    user_repo: UserRepository,
    session_repo: SessionRepository,
    policy: ShopPolicy,
) -> AuthResult:
    """
    Log a user in, creating the account on first use.

    - Unknown usernames are registered with the supplied password.
    - Known usernames must present the matching password.
    - Two concurrent first logins for the same name create one row; the
      loser re-reads it and is verified like any returning user.
    """

    try:
        if not username or not password:
            raise InvalidRequestError("Username and password are required.")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidRequestError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes long."
            )

        created = False
        user = _retrying(policy, lambda: user_repo.get_by_username(username))
        if user is None:
            try:
                user = _retrying(
                    policy, lambda: create_user(username, password, user_repo, policy)
                )
                created = True
            except ConflictError:
                user = _retrying(policy, lambda: user_repo.get_by_username(username))
                if user is None:
                    raise

        if not created and not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Invalid username or password.")

        token = new_session_token()
        _retrying(policy, lambda: session_repo.create_session(token, user.username))
    except (InvalidRequestError, InvalidCredentialsError, ConflictError) as exc:
        log.info("Authentication failed for %s: %s", username, exc)
        return AuthResult(success=False, error_message=str(exc), error=exc)

    return AuthResult(success=True, token=token, user=user, created=created)


def resolve_session(token: str, session_repo: SessionRepository) -> str:
    """
    Return the username a bearer token was issued to.

    Raises `UnauthorizedError` for unknown or empty tokens.
    """

    if not token:
        raise UnauthorizedError("Authorization token required.")
    username = session_repo.find_username(token)
    if username is None:
        raise UnauthorizedError("Invalid token.")
    return username


def logout(token: str, session_repo: SessionRepository) -> OperationResult:
    session_repo.delete_session(token)
    return OperationResult(success=True)


def get_info(
    username: str,
    user_repo: UserRepository,
    ledger_repo: LedgerRepository,
) -> InfoResult:
    """
    Collect balance, inventory and coin history for `username`.

    These are independent reads; under concurrent writes they may reflect
    slightly different points in time but never uncommitted data.
    """

    user = get_user(username, user_repo)
    if user is None:
        error = UserNotFoundError(username)
        return InfoResult(success=False, error_message=str(error), error=error)

    inventory = ledger_repo.get_user_inventory(user.id)
    history = ledger_repo.get_coin_history(user.id)
    return InfoResult(
        success=True,
        coins=user.coins,
        inventory=inventory,
        coin_history=history,
    )


def send_coins(
    sender: str,
    receiver: str,
    amount: object,
    ledger_repo: LedgerRepository,
    policy: ShopPolicy,
) -> OperationResult:
    """
    Transfer coins between two users.

    Validation happens before any store access. The transfer itself is one
    store transaction and is retried as a whole on transient store errors.
    """

    try:
        value = _validate_amount(amount)
        if not receiver:
            raise UserNotFoundError(receiver)
        if sender == receiver and not policy.allow_self_transfer:
            raise SelfTransferError(sender)

        _retrying(policy, lambda: ledger_repo.transfer_coins(sender, receiver, value))
    except LedgerError as exc:
        log.info("Transfer %s -> %s of %r rejected: %s", sender, receiver, amount, exc)
        return OperationResult.failed(exc)

    log.info("Transferred %d coins from %s to %s", value, sender, receiver)
    return OperationResult(success=True)


def buy_item(
    username: str,
    item_name: str,
    ledger_repo: LedgerRepository,
    policy: ShopPolicy,
) -> OperationResult:
    try:
        item = _retrying(policy, lambda: ledger_repo.buy_item(username, item_name))
    except LedgerError as exc:
        log.info("Purchase of %s by %s rejected: %s", item_name, username, exc)
        return OperationResult.failed(exc)

    log.info("User %s bought %s for %d coins", username, item.name, item.price)
    return OperationResult(success=True)
