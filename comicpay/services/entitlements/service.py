import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from comicpay.errors import AlreadyGranted
from comicpay.models.chapter_unlock import ChapterUnlock

logger = logging.getLogger(__name__)


class EntitlementStore:
    """Permanent (account, content unit) grants. One row per pair, enforced by the unique index."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: str, content_unit_id: str) -> ChapterUnlock | None:
        return (
            self.db.query(ChapterUnlock)
            .filter(
                ChapterUnlock.account_id == account_id,
                ChapterUnlock.content_unit_id == content_unit_id,
            )
            .one_or_none()
        )

    def has(self, account_id: str, content_unit_id: str) -> bool:
        return self.get(account_id, content_unit_id) is not None

    def grant(self, account_id: str, content_unit_id: str, credits_spent: int) -> ChapterUnlock:
        """
        Insert the grant inside a SAVEPOINT. Raises AlreadyGranted with the
        existing row when another request got there first; callers treat that
        as success. Flushes, does not commit.
        """
        existing = self.get(account_id, content_unit_id)
        if existing:
            raise AlreadyGranted(existing)
        try:
            with self.db.begin_nested():
                entitlement = ChapterUnlock(
                    account_id=account_id,
                    content_unit_id=content_unit_id,
                    credits_spent=credits_spent,
                )
                self.db.add(entitlement)
        except IntegrityError:
            existing = self.get(account_id, content_unit_id)
            if existing is None:
                raise
            logger.info(
                "entitlement_grant_raced",
                extra={"account_id": account_id, "content_unit_id": content_unit_id},
            )
            raise AlreadyGranted(existing)
        return entitlement

    def list_for_account(self, account_id: str) -> list[ChapterUnlock]:
        return (
            self.db.query(ChapterUnlock)
            .filter(ChapterUnlock.account_id == account_id)
            .order_by(ChapterUnlock.granted_at.desc())
            .all()
        )
