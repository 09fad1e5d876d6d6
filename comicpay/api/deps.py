"""
Request dependencies: bearer session and admin guard.
"""
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from comicpay.db.session import get_db
from comicpay.errors import SessionInvalid
from comicpay.services.auth.service import WalletAuthenticator, WalletSession


def get_current_session(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> WalletSession:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": "Bearer token required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = authorization.split(" ", 1)[1].strip()
    try:
        return WalletAuthenticator(db).load_session(token)
    except SessionInvalid as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.to_dict(),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def require_admin(session: WalletSession = Depends(get_current_session)) -> WalletSession:
    if not session.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Admin role required"},
        )
    return session
