from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from domain.models import CoinHistory, InventoryItem


class AuthRequest(BaseModel):
    username: str
    password: str


class AuthResponse(BaseModel):
    token: str


class SendCoinRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to_user: str = Field(alias="toUser")
    # Strict: JSON true, "5" and 2.0 must not coerce into a coin amount.
    amount: StrictInt


class InventoryItemResponse(BaseModel):
    type: str
    quantity: int


class ReceivedTransactionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_user: str = Field(alias="fromUser")
    amount: int


class SentTransactionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to_user: str = Field(alias="toUser")
    amount: int


class CoinHistoryResponse(BaseModel):
    received: List[ReceivedTransactionResponse] = Field(default_factory=list)
    sent: List[SentTransactionResponse] = Field(default_factory=list)


class InfoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    coins: int
    inventory: List[InventoryItemResponse] = Field(default_factory=list)
    coin_history: CoinHistoryResponse = Field(
        default_factory=CoinHistoryResponse,
        alias="coinHistory",
    )

    @classmethod
    def build(
        cls,
        coins: int,
        inventory: List[InventoryItem],
        history: CoinHistory,
    ) -> "InfoResponse":
        return cls(
            coins=coins,
            inventory=[
                InventoryItemResponse(type=item.type, quantity=item.quantity)
                for item in inventory
            ],
            coin_history=CoinHistoryResponse(
                received=[
                    ReceivedTransactionResponse(from_user=t.from_user, amount=t.amount)
                    for t in history.received
                ],
                sent=[
                    SentTransactionResponse(to_user=t.to_user, amount=t.amount)
                    for t in history.sent
                ],
            ),
        )


class ErrorResponse(BaseModel):
    errors: str
