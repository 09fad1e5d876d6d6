"""
Credits API schemas.
"""
from datetime import datetime

from pydantic import Field

from comicpay.schemas.base import CamelModel


class CreditVerifyRequest(CamelModel):
    external_tx_id: str = Field(..., description="On-chain transaction hash, 0x + 64 hex")
    chain_id: int


class CreditVerifyOut(CamelModel):
    credits_added: int
    new_balance: int
    idempotent: bool


class RetryableOut(CamelModel):
    error: str
    retryable: bool = True
    message: str | None = None


class BalanceOut(CamelModel):
    balance: int
    address: str


class TransactionOut(CamelModel):
    id: str
    amount: int
    kind: str
    status: str
    description: str
    external_tx_id: str | None = None
    chain_id: int | None = None
    content_unit_id: str | None = None
    created_at: datetime


class HistoryOut(CamelModel):
    transactions: list[TransactionOut]
    has_more: bool


class CreditPackageOut(CamelModel):
    package_id: int
    credits: int
    bonus: int
    total_credits: int
