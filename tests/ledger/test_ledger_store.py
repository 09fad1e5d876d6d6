"""Tests for LedgerStore — conditional balance update, idempotency, reconciliation."""
import threading

import pytest
from sqlalchemy import update
from sqlalchemy.dialects import postgresql

from comicpay.errors import AccountNotFound, DuplicateExternalTx, InsufficientCredits, InvalidAmount
from comicpay.models.account import Account
from comicpay.models.credit_transaction import CreditTransaction
from comicpay.models.enums import TransactionKind, TransactionStatus
from comicpay.services.ledger.service import HISTORY_MAX_LIMIT, LedgerStore, check_amount

ADDRESS = "0x" + "a1" * 20
TX = "0x" + "ab" * 32


class TestCheckAmount:
    @pytest.mark.parametrize(
        "kind,amount",
        [
            (TransactionKind.PURCHASE, 0),
            (TransactionKind.PURCHASE, -5),
            (TransactionKind.REFUND, -1),
            (TransactionKind.SPEND, 5),
            (TransactionKind.SPEND, 0),
            (TransactionKind.ADMIN_ADJUSTMENT, 0),
            (TransactionKind.PURCHASE, 1.5),
            (TransactionKind.PURCHASE, True),
        ],
    )
    def test_sign_fixed_by_kind(self, kind, amount):
        with pytest.raises(InvalidAmount):
            check_amount(kind, amount)

    def test_admin_adjustment_allows_both_signs(self):
        check_amount(TransactionKind.ADMIN_ADJUSTMENT, 10)
        check_amount(TransactionKind.ADMIN_ADJUSTMENT, -10)


class TestRecord:
    def test_credit_updates_balance_and_log(self, db, make_account):
        account = make_account(ADDRESS)
        ledger = LedgerStore(db)

        tx = ledger.record(account.id, 625, TransactionKind.PURCHASE, external_tx_id=TX, chain_id=1)
        db.commit()

        assert ledger.balance_of(account.id) == 625
        assert ledger.derived_balance(account.id) == 625
        assert tx.status == TransactionStatus.CONFIRMED
        assert tx.description == "On-chain credit purchase"

    def test_debit_within_balance(self, db, make_account):
        account = make_account(ADDRESS, balance=5)
        ledger = LedgerStore(db)

        ledger.record(account.id, -5, TransactionKind.SPEND, content_unit_id="ch-1")
        db.commit()

        assert ledger.balance_of(account.id) == 0
        assert ledger.derived_balance(account.id) == 0

    def test_debit_below_zero_rejected_without_row(self, db, make_account):
        account = make_account(ADDRESS, balance=3)
        ledger = LedgerStore(db)

        with pytest.raises(InsufficientCredits) as exc:
            ledger.record(account.id, -5, TransactionKind.SPEND, content_unit_id="ch-1")
        db.rollback()

        assert exc.value.required == 5
        assert exc.value.available == 3
        assert exc.value.to_dict() == {"error": "insufficient_credits", "required": 5, "available": 3}
        assert ledger.balance_of(account.id) == 3
        assert db.query(CreditTransaction).filter_by(kind=TransactionKind.SPEND).count() == 0

    def test_rejected_debit_keeps_outer_transaction_usable(self, db, make_account):
        account = make_account(ADDRESS, balance=3)
        ledger = LedgerStore(db)

        ledger.record(account.id, 2, TransactionKind.REFUND)
        with pytest.raises(InsufficientCredits):
            ledger.record(account.id, -10, TransactionKind.SPEND)
        db.commit()

        assert ledger.balance_of(account.id) == 5

    def test_unknown_account(self, db):
        with pytest.raises(AccountNotFound):
            LedgerStore(db).record("missing", 10, TransactionKind.PURCHASE)

    def test_duplicate_external_tx(self, db, make_account):
        account = make_account(ADDRESS)
        ledger = LedgerStore(db)
        first = ledger.record(account.id, 100, TransactionKind.PURCHASE, external_tx_id=TX)
        db.commit()

        with pytest.raises(DuplicateExternalTx) as exc:
            ledger.record(account.id, 100, TransactionKind.PURCHASE, external_tx_id=TX)

        assert exc.value.transaction.id == first.id
        assert ledger.balance_of(account.id) == 100

    def test_unique_index_race_surfaces_as_duplicate(self, db, make_account, monkeypatch):
        account = make_account(ADDRESS)
        ledger = LedgerStore(db)
        ledger.record(account.id, 100, TransactionKind.PURCHASE, external_tx_id=TX)
        db.commit()

        # Pre-check misses the row, as when a concurrent insert has not committed yet
        original = ledger.get_by_external_tx
        calls = []

        def racing_lookup(external_tx_id):
            calls.append(external_tx_id)
            return None if len(calls) == 1 else original(external_tx_id)

        monkeypatch.setattr(ledger, "get_by_external_tx", racing_lookup)

        with pytest.raises(DuplicateExternalTx):
            ledger.record(account.id, 100, TransactionKind.PURCHASE, external_tx_id=TX)
        db.rollback()

        assert ledger.balance_of(account.id) == 100
        assert ledger.derived_balance(account.id) == 100

    def test_concurrent_debits_never_overdraw(self, db, session_factory, make_account):
        account = make_account(ADDRESS, balance=10)
        db.close()
        outcomes = []
        barrier = threading.Barrier(5)

        def worker(n):
            session = session_factory()
            try:
                barrier.wait()
                LedgerStore(session).record(account.id, -3, TransactionKind.SPEND, content_unit_id=f"ch-{n}")
                session.commit()
                outcomes.append("ok")
            except InsufficientCredits:
                session.rollback()
                outcomes.append("insufficient")
            finally:
                session.close()

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        check = session_factory()
        ledger = LedgerStore(check)
        assert outcomes.count("ok") == 3
        assert outcomes.count("insufficient") == 2
        assert ledger.balance_of(account.id) == 1
        assert ledger.derived_balance(account.id) == 1
        check.close()


class TestHistory:
    def test_history_page(self, db, make_account):
        account = make_account(ADDRESS)
        ledger = LedgerStore(db)
        for _ in range(5):
            ledger.record(account.id, 1, TransactionKind.REFUND)
        db.commit()

        rows, has_more = ledger.history_page(account.id, limit=3)
        assert len(rows) == 3
        assert has_more is True

        rows, has_more = ledger.history_page(account.id, limit=3, offset=3)
        assert len(rows) == 2
        assert has_more is False

    def test_history_only_own_rows(self, db, make_account):
        a = make_account(ADDRESS, balance=10)
        make_account("0x" + "b2" * 20, balance=20)

        rows = LedgerStore(db).history(a.id)
        assert [r.amount for r in rows] == [10]

    def test_limit_capped(self, db, make_account):
        account = make_account(ADDRESS)
        ledger = LedgerStore(db)
        for _ in range(HISTORY_MAX_LIMIT + 5):
            ledger.record(account.id, 1, TransactionKind.REFUND)
        db.commit()

        rows, has_more = ledger.history_page(account.id, limit=1000)
        assert len(rows) == HISTORY_MAX_LIMIT
        assert has_more is True


class TestAdjustAndReconcile:
    def test_admin_debit_obeys_balance(self, db, make_account):
        account = make_account(ADDRESS, balance=5)
        ledger = LedgerStore(db)

        with pytest.raises(InsufficientCredits):
            ledger.adjust(account.id, -6, "chargeback", admin_account_id="admin-1")
        db.rollback()

        tx = ledger.adjust(account.id, -5, "chargeback", admin_account_id="admin-1")
        assert tx.kind == TransactionKind.ADMIN_ADJUSTMENT
        assert "chargeback" in tx.description
        assert ledger.balance_of(account.id) == 0

    def test_reconcile_without_drift(self, db, make_account):
        account = make_account(ADDRESS, balance=40)
        result = LedgerStore(db).reconcile(account.id)
        assert (result.cached, result.derived, result.drift) == (40, 40, 0)

    def test_reconcile_corrects_drift(self, db, make_account):
        account = make_account(ADDRESS, balance=40)
        db.execute(update(Account).where(Account.id == account.id).values(credits_balance=55))
        db.commit()
        ledger = LedgerStore(db)

        result = ledger.reconcile(account.id, fix=True)

        assert result.drift == 15
        assert ledger.balance_of(account.id) == 40

    def test_reconcile_report_only(self, db, make_account):
        account = make_account(ADDRESS, balance=40)
        db.execute(update(Account).where(Account.id == account.id).values(credits_balance=30))
        db.commit()
        ledger = LedgerStore(db)

        assert ledger.reconcile(account.id, fix=False).drift == -10
        assert ledger.balance_of(account.id) == 30

    def test_reconcile_locks_account_row_before_reading(self, db, make_account, monkeypatch):
        account = make_account(ADDRESS, balance=40)
        statements = []
        execute = db.execute

        def recording_execute(statement, *args, **kwargs):
            statements.append(statement)
            return execute(statement, *args, **kwargs)

        monkeypatch.setattr(db, "execute", recording_execute)
        LedgerStore(db).reconcile(account.id)

        first = str(statements[0].compile(dialect=postgresql.dialect()))
        assert "FROM accounts" in first
        assert "FOR UPDATE" in first

    def test_reconcile_fix_is_part_of_caller_transaction(self, db, make_account):
        account = make_account(ADDRESS, balance=40)
        db.execute(update(Account).where(Account.id == account.id).values(credits_balance=55))
        db.commit()
        ledger = LedgerStore(db)

        assert ledger.reconcile(account.id, fix=True).drift == 15
        db.rollback()

        assert ledger.balance_of(account.id) == 55

    def test_reconcile_unknown_account(self, db):
        with pytest.raises(AccountNotFound):
            LedgerStore(db).reconcile("missing")

    def test_adjust_leaves_commit_to_caller(self, db, make_account):
        account = make_account(ADDRESS, balance=5)
        ledger = LedgerStore(db)

        ledger.adjust(account.id, 20, "support gift", admin_account_id="admin-1")
        db.rollback()

        assert ledger.balance_of(account.id) == 5
        assert ledger.derived_balance(account.id) == 5
