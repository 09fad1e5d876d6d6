"""
CreditTransaction — append-only credit log.
external_tx_id (hash on-chain транзакции) уникален: единственная защита от двойного начисления.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String

from comicpay.db.base import Base
from comicpay.models.enums import TransactionKind, TransactionStatus


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        Index("ix_credit_transactions_account_created", "account_id", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # > 0 credit, < 0 debit
    kind = Column(Enum(TransactionKind, native_enum=False, length=32), nullable=False)
    status = Column(
        Enum(TransactionStatus, native_enum=False, length=16),
        nullable=False,
        default=TransactionStatus.CONFIRMED,
    )
    # NULLs are distinct in a unique index, so only on-chain purchases take part
    external_tx_id = Column(String(66), unique=True, nullable=True)
    chain_id = Column(Integer, nullable=True)
    content_unit_id = Column(String, nullable=True)
    description = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
