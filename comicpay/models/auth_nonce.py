"""
AuthNonce — одноразовый SIWE challenge, привязанный к адресу кошелька.
expires_at индексирован: по нему работает ленивая очистка и периодический sweep.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from comicpay.db.base import Base


class AuthNonce(Base):
    __tablename__ = "auth_nonces"

    nonce = Column(String(64), primary_key=True)
    address = Column(String(42), nullable=False, index=True)  # lowercase
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
