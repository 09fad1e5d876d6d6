"""
NonceRegistry — одноразовые SIWE challenge-значения с TTL.

consume() — один условный UPDATE: из двух параллельных попыток с одним nonce
успешна ровно одна, просроченные/неизвестные/использованные отклоняются.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, or_, update
from sqlalchemy.orm import Session

from comicpay.core.config import settings
from comicpay.models.auth_nonce import AuthNonce

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedNonce:
    nonce: str
    address: str
    expires_at: datetime


class NonceRegistry:
    def __init__(self, db: Session, ttl_seconds: int | None = None):
        self.db = db
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.nonce_ttl_seconds

    def issue(self, address: str) -> IssuedNonce:
        address = address.lower()
        now = datetime.now(timezone.utc)
        # Lazy purge; the periodic sweep handles addresses that never come back
        self.db.execute(
            delete(AuthNonce)
            .where(AuthNonce.address == address, AuthNonce.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        nonce = secrets.token_hex(16)
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        self.db.add(AuthNonce(nonce=nonce, address=address, expires_at=expires_at))
        self.db.commit()
        logger.info("nonce_issued", extra={"address": address})
        return IssuedNonce(nonce=nonce, address=address, expires_at=expires_at)

    def consume(self, address: str, nonce: str) -> bool:
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(AuthNonce)
            .where(
                AuthNonce.nonce == nonce,
                AuthNonce.address == address.lower(),
                AuthNonce.consumed_at.is_(None),
                AuthNonce.expires_at > now,
            )
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        consumed = result.rowcount == 1
        if not consumed:
            logger.warning("nonce_rejected", extra={"address": address.lower()})
        return consumed

    def purge_expired(self) -> int:
        """Delete expired and already consumed nonces. Returns number of rows removed."""
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            delete(AuthNonce).where(
                or_(AuthNonce.expires_at <= now, AuthNonce.consumed_at.is_not(None))
            ).execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount
