from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum, Integer, String

from comicpay.db.base import Base
from comicpay.models.enums import AccountRole


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    wallet_address = Column(String(42), unique=True, nullable=False, index=True)  # lowercase 0x...
    username = Column(String, nullable=True)
    role = Column(Enum(AccountRole, native_enum=False, length=16), nullable=False, default=AccountRole.USER)
    # Materialized sum of CONFIRMED credit_transactions.amount; written only by LedgerStore
    credits_balance = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN
