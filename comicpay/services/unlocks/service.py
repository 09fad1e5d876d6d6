"""
UnlockCoordinator — единственный writer, который объединяет списание в LedgerStore
с выдачей доступа в EntitlementStore.

CHECK_ENTITLEMENT -> [уже открыто: DONE] -> CHECK_BALANCE -> [не хватает: FAIL]
-> DEBIT_AND_GRANT -> DONE

Списание, выдача и (при гонке) компенсирующий REFUND коммитятся одной транзакцией.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from comicpay.errors import AlreadyGranted, InsufficientCredits, InvalidAmount
from comicpay.models.chapter_unlock import ChapterUnlock
from comicpay.models.enums import TransactionKind
from comicpay.services.entitlements.service import EntitlementStore
from comicpay.services.ledger.service import LedgerStore
from comicpay.utils.metrics import unlocks_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnlockResult:
    entitlement: ChapterUnlock
    already_unlocked: bool
    credits_spent: int
    new_balance: int


class UnlockCoordinator:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerStore(db)
        self.entitlements = EntitlementStore(db)

    def unlock(self, account_id: str, content_unit_id: str, cost: int) -> UnlockResult:
        if cost < 0:
            raise InvalidAmount("unlock cost cannot be negative")

        existing = self.entitlements.get(account_id, content_unit_id)
        if existing:
            unlocks_total.labels(outcome="already_unlocked").inc()
            return self._already(existing, account_id)

        if cost == 0:
            return self._grant_free(account_id, content_unit_id)

        try:
            self.ledger.record(
                account_id,
                -cost,
                TransactionKind.SPEND,
                content_unit_id=content_unit_id,
                description=f"Unlock content unit {content_unit_id}",
            )
        except InsufficientCredits:
            self.db.rollback()
            # A concurrent duplicate may have granted and spent the balance first
            existing = self.entitlements.get(account_id, content_unit_id)
            if existing:
                unlocks_total.labels(outcome="already_unlocked").inc()
                return self._already(existing, account_id)
            unlocks_total.labels(outcome="insufficient").inc()
            logger.info(
                "unlock_insufficient_credits",
                extra={"account_id": account_id, "content_unit_id": content_unit_id, "amount": cost},
            )
            raise
        except Exception:
            self.db.rollback()
            raise

        try:
            entitlement = self.entitlements.grant(account_id, content_unit_id, cost)
        except AlreadyGranted as exc:
            # Debit already applied inside this transaction: compensate before committing
            self.ledger.record(
                account_id,
                cost,
                TransactionKind.REFUND,
                content_unit_id=content_unit_id,
                description=f"Refund duplicate unlock of {content_unit_id}",
            )
            self.db.commit()
            unlocks_total.labels(outcome="raced_refunded").inc()
            logger.warning(
                "unlock_raced_refunded",
                extra={"account_id": account_id, "content_unit_id": content_unit_id, "amount": cost},
            )
            return self._already(exc.entitlement, account_id)
        except Exception:
            self.db.rollback()
            raise

        self.db.commit()
        unlocks_total.labels(outcome="granted").inc()
        new_balance = self.ledger.balance_of(account_id)
        logger.info(
            "unlock_granted",
            extra={
                "account_id": account_id,
                "content_unit_id": content_unit_id,
                "amount": cost,
                "new_balance": new_balance,
            },
        )
        return UnlockResult(
            entitlement=entitlement,
            already_unlocked=False,
            credits_spent=cost,
            new_balance=new_balance,
        )

    def _grant_free(self, account_id: str, content_unit_id: str) -> UnlockResult:
        try:
            entitlement = self.entitlements.grant(account_id, content_unit_id, 0)
        except AlreadyGranted as exc:
            return self._already(exc.entitlement, account_id)
        self.db.commit()
        unlocks_total.labels(outcome="free").inc()
        return UnlockResult(
            entitlement=entitlement,
            already_unlocked=False,
            credits_spent=0,
            new_balance=self.ledger.balance_of(account_id),
        )

    def _already(self, entitlement: ChapterUnlock, account_id: str) -> UnlockResult:
        return UnlockResult(
            entitlement=entitlement,
            already_unlocked=True,
            credits_spent=0,
            new_balance=self.ledger.balance_of(account_id),
        )
