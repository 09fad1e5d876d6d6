"""
LedgerStore — append-only журнал кредитов и материализованный баланс.

record() — единственный путь записи в журнал. Баланс аккаунта обновляется
условным UPDATE в том же SAVEPOINT, что и вставка строки журнала:
либо оба изменения, либо ни одного. Для списаний условие
credits_balance + amount >= 0 проверяется самой БД (row lock до конца транзакции).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from comicpay.errors import AccountNotFound, DuplicateExternalTx, InsufficientCredits, InvalidAmount
from comicpay.models.account import Account
from comicpay.models.credit_transaction import CreditTransaction
from comicpay.models.enums import TransactionKind, TransactionStatus
from comicpay.utils.metrics import balance_drift_total, balance_rejected_total, ledger_operations_total

logger = logging.getLogger(__name__)

HISTORY_MAX_LIMIT = 100

_DEFAULT_DESCRIPTIONS = {
    TransactionKind.PURCHASE: "On-chain credit purchase",
    TransactionKind.SPEND: "Content unlock",
    TransactionKind.REFUND: "Refund",
    TransactionKind.ADMIN_ADJUSTMENT: "Admin adjustment",
}


@dataclass(frozen=True)
class ReconcileResult:
    account_id: str
    cached: int
    derived: int

    @property
    def drift(self) -> int:
        return self.cached - self.derived


def check_amount(kind: TransactionKind, amount: int) -> None:
    """Sign is fixed by kind: PURCHASE/REFUND credit, SPEND debits, ADMIN_ADJUSTMENT either way."""
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise InvalidAmount(f"amount must be an integer, got {amount!r}")
    if kind in (TransactionKind.PURCHASE, TransactionKind.REFUND) and amount <= 0:
        raise InvalidAmount(f"{kind.value} amount must be positive")
    if kind == TransactionKind.SPEND and amount >= 0:
        raise InvalidAmount("SPEND amount must be negative")
    if kind == TransactionKind.ADMIN_ADJUSTMENT and amount == 0:
        raise InvalidAmount("ADMIN_ADJUSTMENT amount cannot be zero")


class LedgerStore:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def balance_of(self, account_id: str) -> int:
        balance = self.db.execute(
            select(Account.credits_balance).where(Account.id == account_id)
        ).scalar_one_or_none()
        if balance is None:
            raise AccountNotFound(f"account {account_id} not found")
        return balance

    def derived_balance(self, account_id: str) -> int:
        """Balance recomputed from the log: sum of CONFIRMED amounts."""
        total = self.db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.account_id == account_id,
                CreditTransaction.status == TransactionStatus.CONFIRMED,
            )
        ).scalar_one()
        return int(total)

    def get_by_external_tx(self, external_tx_id: str) -> CreditTransaction | None:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.external_tx_id == external_tx_id)
            .one_or_none()
        )

    def history(self, account_id: str, limit: int = 50, offset: int = 0) -> list[CreditTransaction]:
        return self.history_page(account_id, limit, offset)[0]

    def history_page(self, account_id: str, limit: int = 50, offset: int = 0) -> tuple[list[CreditTransaction], bool]:
        """Newest first. Returns (rows, has_more); limit is capped at HISTORY_MAX_LIMIT."""
        limit = max(1, min(limit, HISTORY_MAX_LIMIT))
        rows = (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.account_id == account_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset(max(0, offset))
            .limit(limit + 1)
            .all()
        )
        return rows[:limit], len(rows) > limit

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        account_id: str,
        amount: int,
        kind: TransactionKind,
        external_tx_id: str | None = None,
        chain_id: int | None = None,
        content_unit_id: str | None = None,
        description: str | None = None,
    ) -> CreditTransaction:
        """
        Append a CONFIRMED row and move the cached balance by the same amount.
        Flushes but does not commit: the caller owns the transaction boundary.

        Raises DuplicateExternalTx (carrying the existing row) when external_tx_id
        was already recorded, InsufficientCredits when a debit would go below zero.
        """
        check_amount(kind, amount)

        if external_tx_id is not None:
            existing = self.get_by_external_tx(external_tx_id)
            if existing:
                raise DuplicateExternalTx(existing)

        try:
            with self.db.begin_nested():
                stmt = (
                    update(Account)
                    .where(Account.id == account_id)
                    .values(credits_balance=Account.credits_balance + amount)
                )
                if amount < 0:
                    stmt = stmt.where(Account.credits_balance + amount >= 0)
                result = self.db.execute(stmt)
                if result.rowcount != 1:
                    raise self._rejected(account_id, amount)

                transaction = CreditTransaction(
                    account_id=account_id,
                    amount=amount,
                    kind=kind,
                    status=TransactionStatus.CONFIRMED,
                    external_tx_id=external_tx_id,
                    chain_id=chain_id,
                    content_unit_id=content_unit_id,
                    description=description or _DEFAULT_DESCRIPTIONS[kind],
                )
                self.db.add(transaction)
        except IntegrityError:
            # Concurrent insert of the same external_tx_id won the unique index
            existing = self.get_by_external_tx(external_tx_id) if external_tx_id else None
            if existing is None:
                raise
            raise DuplicateExternalTx(existing)

        ledger_operations_total.labels(kind=kind.value).inc()
        logger.info(
            "ledger_recorded",
            extra={
                "account_id": account_id,
                "amount": amount,
                "kind": kind.value,
                "external_tx_id": external_tx_id,
                "content_unit_id": content_unit_id,
            },
        )
        return transaction

    def adjust(self, account_id: str, amount: int, reason: str, admin_account_id: str) -> CreditTransaction:
        """
        Admin credit/debit. Debits obey the same never-below-zero rule.
        Not committed: the caller commits together with its audit entry.
        """
        return self.record(
            account_id,
            amount,
            TransactionKind.ADMIN_ADJUSTMENT,
            description=f"Admin adjustment by {admin_account_id}: {reason}",
        )

    def reconcile(self, account_id: str, fix: bool = True) -> ReconcileResult:
        """
        Compare the cached balance with the log. With fix=True the cache is
        overwritten by the derived value.

        The account row is locked first (SELECT ... FOR UPDATE), so no balance
        write can land between the two reads or before the fix. The lock is
        held until the caller commits.
        """
        cached = self.db.execute(
            select(Account.credits_balance).where(Account.id == account_id).with_for_update()
        ).scalar_one_or_none()
        if cached is None:
            raise AccountNotFound(f"account {account_id} not found")
        derived = self.derived_balance(account_id)
        result = ReconcileResult(account_id=account_id, cached=cached, derived=derived)
        if result.drift != 0:
            balance_drift_total.inc()
            logger.warning(
                "ledger_balance_drift",
                extra={"account_id": account_id, "cached": cached, "derived": derived, "drift": result.drift},
            )
            if fix:
                self.db.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(credits_balance=derived)
                )
        return result

    def _rejected(self, account_id: str, amount: int) -> Exception:
        available = self.db.execute(
            select(Account.credits_balance).where(Account.id == account_id)
        ).scalar_one_or_none()
        if available is None:
            return AccountNotFound(f"account {account_id} not found")
        balance_rejected_total.inc()
        return InsufficientCredits(required=-amount, available=available)
