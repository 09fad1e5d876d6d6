"""
Wallet sign-in routes (SIWE).
POST /auth/nonce -> message to sign; POST /auth/verify -> bearer token.
"""
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from comicpay.api.deps import get_current_session
from comicpay.db.session import get_db
from comicpay.schemas.auth import MeOut, NonceOut, NonceRequest, SessionOut, VerifyRequest
from comicpay.services.accounts.service import AccountService
from comicpay.services.auth.service import WalletAuthenticator, WalletSession

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/nonce", response_model=NonceOut)
def issue_nonce(body: NonceRequest = Body(...), db: Session = Depends(get_db)):
    """Issue a one-time nonce and the EIP-4361 message the wallet has to sign."""
    challenge = WalletAuthenticator(db).challenge(body.address)
    return NonceOut(nonce=challenge.nonce, message=challenge.message, expires_at=challenge.expires_at)


@router.post("/verify", response_model=SessionOut)
def verify_signature(body: VerifyRequest = Body(...), db: Session = Depends(get_db)):
    session = WalletAuthenticator(db).verify(body.address, body.message, body.signature)
    return SessionOut(
        token=session.token,
        account_id=session.account_id,
        address=session.address,
        role=session.role.value,
        expires_at=session.expires_at,
    )


@router.get("/me", response_model=MeOut)
def get_me(session: WalletSession = Depends(get_current_session), db: Session = Depends(get_db)):
    account = AccountService(db).get(session.account_id)
    return MeOut(
        account_id=account.id,
        address=account.wallet_address,
        role=account.role.value,
        username=account.username,
    )
