"""
Credits API: on-chain purchase verification, balance, history, packages.
"""
from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from comicpay.api.deps import get_current_session
from comicpay.db.session import get_db
from comicpay.models.credit_transaction import CreditTransaction
from comicpay.schemas.credits import (
    BalanceOut,
    CreditPackageOut,
    CreditVerifyOut,
    CreditVerifyRequest,
    HistoryOut,
    RetryableOut,
    TransactionOut,
)
from comicpay.schemas.base import ErrorOut
from comicpay.services.auth.service import WalletSession
from comicpay.services.ledger.service import LedgerStore
from comicpay.services.purchases.config import get_credit_packages
from comicpay.services.purchases.service import PurchaseVerifier, default_chain_client_factory

router = APIRouter(prefix="/credits", tags=["credits"])


def get_chain_client_factory():
    return default_chain_client_factory


def transaction_out(tx: CreditTransaction) -> TransactionOut:
    return TransactionOut(
        id=tx.id,
        amount=tx.amount,
        kind=tx.kind.value,
        status=tx.status.value,
        description=tx.description,
        external_tx_id=tx.external_tx_id,
        chain_id=tx.chain_id,
        content_unit_id=tx.content_unit_id,
        created_at=tx.created_at,
    )


@router.post(
    "/verify",
    response_model=CreditVerifyOut,
    responses={202: {"model": RetryableOut}, 422: {"model": ErrorOut}},
)
def verify_purchase(
    body: CreditVerifyRequest = Body(...),
    session: WalletSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    chain_client_factory=Depends(get_chain_client_factory),
):
    """
    Credit an on-chain purchase. Safe to resubmit: a known transaction hash
    returns the original amount with idempotent=true.
    202 + Retry-After while the transaction is not mined or not deep enough.
    """
    verifier = PurchaseVerifier(db, chain_client_factory=chain_client_factory)
    result = verifier.verify(body.external_tx_id, body.chain_id, session.account_id)
    return CreditVerifyOut(
        credits_added=result.credits_added,
        new_balance=result.new_balance,
        idempotent=result.idempotent,
    )


@router.get("/balance", response_model=BalanceOut)
def get_balance(session: WalletSession = Depends(get_current_session), db: Session = Depends(get_db)):
    return BalanceOut(balance=LedgerStore(db).balance_of(session.account_id), address=session.address)


@router.get("/history", response_model=HistoryOut)
def get_history(
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    session: WalletSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    rows, has_more = LedgerStore(db).history_page(session.account_id, limit=limit, offset=offset)
    return HistoryOut(transactions=[transaction_out(tx) for tx in rows], has_more=has_more)


@router.get("/packages", response_model=list[CreditPackageOut])
def list_packages():
    return [
        CreditPackageOut(
            package_id=p.package_id,
            credits=p.credits,
            bonus=p.bonus,
            total_credits=p.total_credits,
        )
        for p in sorted(get_credit_packages().values(), key=lambda p: p.package_id)
    ]
