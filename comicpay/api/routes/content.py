"""
Content access routes: unlock a content unit for credits, library, access check.
Prices come from the catalog service; the entitlement is permanent.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from comicpay.api.deps import get_current_session
from comicpay.db.session import get_db
from comicpay.schemas.base import ErrorOut
from comicpay.schemas.content import AccessOut, EntitlementOut, InsufficientCreditsOut, UnlockOut, UnlocksOut
from comicpay.services.auth.service import WalletSession
from comicpay.services.catalog.client import CatalogClient
from comicpay.services.entitlements.service import EntitlementStore
from comicpay.services.unlocks.service import UnlockCoordinator

router = APIRouter(prefix="/content", tags=["content"])


def get_catalog_client():
    client = CatalogClient()
    try:
        yield client
    finally:
        client.close()


# /unlocks before /{content_unit_id}/...
@router.get("/unlocks", response_model=UnlocksOut)
def list_unlocks(session: WalletSession = Depends(get_current_session), db: Session = Depends(get_db)):
    return UnlocksOut(
        unlocks=[
            EntitlementOut(
                content_unit_id=e.content_unit_id,
                credits_spent=e.credits_spent,
                granted_at=e.granted_at,
            )
            for e in EntitlementStore(db).list_for_account(session.account_id)
        ]
    )


@router.post(
    "/{content_unit_id}/unlock",
    response_model=UnlockOut,
    responses={404: {"model": ErrorOut}, 409: {"model": InsufficientCreditsOut}},
)
def unlock_content(
    content_unit_id: str,
    session: WalletSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog_client),
):
    """
    Spend credits to unlock. Repeating the call for an unlocked unit is a
    no-op success (alreadyUnlocked=true, creditsSpent=0).
    409 {error: insufficient_credits, required, available} when the balance is short.
    """
    entitlements = EntitlementStore(db)
    if entitlements.has(session.account_id, content_unit_id):
        # Already paid: no catalog round trip
        cost = 0
    else:
        cost = catalog.get_unlock_cost(content_unit_id)
    result = UnlockCoordinator(db).unlock(session.account_id, content_unit_id, cost)
    return UnlockOut(
        unlocked=True,
        new_balance=result.new_balance,
        already_unlocked=result.already_unlocked,
        credits_spent=result.credits_spent,
    )


@router.get("/{content_unit_id}/access", response_model=AccessOut)
def check_access(
    content_unit_id: str,
    session: WalletSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return AccessOut(unlocked=EntitlementStore(db).has(session.account_id, content_unit_id))
