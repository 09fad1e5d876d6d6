from datetime import datetime

from comicpay.schemas.base import CamelModel


class UnlockOut(CamelModel):
    unlocked: bool = True
    new_balance: int
    already_unlocked: bool
    credits_spent: int


class InsufficientCreditsOut(CamelModel):
    error: str = "insufficient_credits"
    required: int
    available: int


class EntitlementOut(CamelModel):
    content_unit_id: str
    credits_spent: int
    granted_at: datetime


class UnlocksOut(CamelModel):
    unlocks: list[EntitlementOut]


class AccessOut(CamelModel):
    unlocked: bool
