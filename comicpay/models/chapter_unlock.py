from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from comicpay.db.base import Base


class ChapterUnlock(Base):
    __tablename__ = "chapter_unlocks"
    __table_args__ = (UniqueConstraint("account_id", "content_unit_id", name="uq_chapter_unlock_account_unit"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    content_unit_id = Column(String, nullable=False)
    credits_spent = Column(Integer, nullable=False, default=0)
    granted_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
