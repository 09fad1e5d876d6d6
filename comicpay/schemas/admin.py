"""
Admin API schemas.
"""
from datetime import datetime
from typing import Any

from pydantic import Field

from comicpay.models.enums import AccountRole
from comicpay.schemas.base import CamelModel


class CreditAdjustmentRequest(CamelModel):
    """Amount sign decides credit or debit; range is checked against settings in the route."""
    amount: int
    reason: str = Field(..., min_length=1, max_length=200)


class CreditAdjustmentOut(CamelModel):
    transaction_id: str
    amount: int
    new_balance: int


class RoleChangeRequest(CamelModel):
    role: AccountRole


class AccountOut(CamelModel):
    id: str
    wallet_address: str
    username: str | None = None
    role: str
    credits_balance: int
    created_at: datetime


class ReconcileOut(CamelModel):
    account_id: str
    cached: int
    derived: int
    drift: int
    corrected: bool


class AuditLogOut(CamelModel):
    id: str
    actor_type: str
    actor_id: str | None = None
    action: str
    entity_type: str
    entity_id: str | None = None
    payload: dict[str, Any]
    created_at: datetime
