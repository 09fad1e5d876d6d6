"""
Admin API: account lookup, credit adjustments, roles, balance reconciliation, audit.
All routes require an ADMIN session.
"""
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from comicpay.api.deps import require_admin
from comicpay.core.config import settings
from comicpay.db.session import get_db
from comicpay.models.account import Account
from comicpay.schemas.admin import (
    AccountOut,
    AuditLogOut,
    CreditAdjustmentOut,
    CreditAdjustmentRequest,
    ReconcileOut,
    RoleChangeRequest,
)
from comicpay.services.accounts.service import AccountService
from comicpay.services.audit.service import AuditService
from comicpay.services.auth.service import WalletSession
from comicpay.services.ledger.service import LedgerStore

router = APIRouter(prefix="/admin", tags=["admin"])


def account_out(account: Account) -> AccountOut:
    return AccountOut(
        id=account.id,
        wallet_address=account.wallet_address,
        username=account.username,
        role=account.role.value,
        credits_balance=account.credits_balance,
        created_at=account.created_at,
    )


@router.get("/accounts/{account_id}", response_model=AccountOut)
def get_account(account_id: str, admin: WalletSession = Depends(require_admin), db: Session = Depends(get_db)):
    return account_out(AccountService(db).get(account_id))


@router.post("/accounts/{account_id}/credits", response_model=CreditAdjustmentOut)
def adjust_credits(
    account_id: str,
    body: CreditAdjustmentRequest = Body(...),
    admin: WalletSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    limit = settings.admin_credit_adjustment_limit
    if body.amount == 0 or abs(body.amount) > limit:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_amount", "message": f"amount must be non-zero and within ±{limit}"},
        )
    AccountService(db).get(account_id)
    ledger = LedgerStore(db)
    tx = ledger.adjust(account_id, body.amount, body.reason, admin.account_id)
    # Commits the adjustment and its audit entry together
    AuditService(db).log(
        actor_type="admin",
        actor_id=admin.account_id,
        action="credits_adjusted",
        entity_type="account",
        entity_id=account_id,
        payload={"amount": body.amount, "reason": body.reason, "transaction_id": tx.id},
    )
    return CreditAdjustmentOut(transaction_id=tx.id, amount=tx.amount, new_balance=ledger.balance_of(account_id))


@router.post("/accounts/{account_id}/role", response_model=AccountOut)
def change_role(
    account_id: str,
    body: RoleChangeRequest = Body(...),
    admin: WalletSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    account = AccountService(db).set_role(account_id, body.role, admin.account_id)
    AuditService(db).log(
        actor_type="admin",
        actor_id=admin.account_id,
        action="role_changed",
        entity_type="account",
        entity_id=account_id,
        payload={"role": body.role.value},
    )
    return account_out(account)


@router.post("/accounts/{account_id}/reconcile", response_model=ReconcileOut)
def reconcile_account(
    account_id: str,
    admin: WalletSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Recompute the balance from the transaction log and correct the cached value."""
    AccountService(db).get(account_id)
    result = LedgerStore(db).reconcile(account_id, fix=True)
    if result.drift:
        AuditService(db).log(
            actor_type="admin",
            actor_id=admin.account_id,
            action="balance_reconciled",
            entity_type="account",
            entity_id=account_id,
            payload={"cached": result.cached, "derived": result.derived, "drift": result.drift},
        )
    else:
        db.commit()
    return ReconcileOut(
        account_id=account_id,
        cached=result.cached,
        derived=result.derived,
        drift=result.drift,
        corrected=result.drift != 0,
    )


@router.get("/accounts/{account_id}/audit", response_model=list[AuditLogOut])
def account_audit(
    account_id: str,
    limit: int = Query(50, ge=1, le=200),
    admin: WalletSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    entries = AuditService(db).for_entity("account", account_id, limit=limit)
    return [AuditLogOut.model_validate(e) for e in entries]
