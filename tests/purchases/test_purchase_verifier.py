"""Tests for PurchaseVerifier — on-chain proof checks and idempotent crediting."""
import threading

import pytest

from comicpay.errors import (
    AddressMismatch,
    MalformedEvent,
    TxNotFound,
    TxPending,
    TxReverted,
    WrongChain,
    WrongContract,
)
from comicpay.models.credit_transaction import CreditTransaction
from comicpay.models.enums import TransactionKind
from comicpay.services.chain.client import ChainRPCError
from comicpay.services.ledger.service import LedgerStore
from comicpay.services.purchases.service import (
    CREDITS_PURCHASED_TOPIC,
    PurchaseVerifier,
    normalize_tx_hash,
)


@pytest.fixture
def buyer(make_account, alice):
    return make_account(alice.address)


@pytest.fixture
def verifier(db, chain_factory):
    return PurchaseVerifier(db, chain_client_factory=chain_factory)


class TestNormalize:
    def test_lowercases(self):
        h = "0x" + "AB" * 32
        assert normalize_tx_hash(h) == h.lower()

    @pytest.mark.parametrize("value", ["", "0x1234", "ab" * 32, "0x" + "zz" * 32, None])
    def test_rejects_malformed(self, value):
        with pytest.raises(MalformedEvent):
            normalize_tx_hash(value)


class TestTopics:
    def test_credits_purchased_topic_is_keccak_of_signature(self):
        assert CREDITS_PURCHASED_TOPIC.startswith("0x")
        assert len(CREDITS_PURCHASED_TOPIC) == 66


class TestVerify:
    def test_package_purchase_with_bonus(self, db, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(1)
        chain.receipts[h] = receipts.build(h, alice.address, package_id=1)

        result = verifier.verify(h, receipts.chain_id, buyer.id)

        assert result.credits_added == 625
        assert result.new_balance == 625
        assert result.idempotent is False
        row = db.query(CreditTransaction).one()
        assert row.kind == TransactionKind.PURCHASE
        assert row.external_tx_id == h
        assert row.chain_id == receipts.chain_id
        assert chain.closed == 1

    def test_resubmission_is_idempotent_without_chain_call(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(2)
        chain.receipts[h] = receipts.build(h, alice.address, package_id=1)
        verifier.verify(h, receipts.chain_id, buyer.id)
        calls = len(chain.calls)

        again = verifier.verify(h.upper().replace("0X", "0x"), receipts.chain_id, buyer.id)

        assert again.idempotent is True
        assert again.credits_added == 625
        assert again.new_balance == 625
        assert len(chain.calls) == calls

    def test_direct_credit_event(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(3)
        chain.receipts[h] = receipts.build(h, alice.address, credits=120)
        assert verifier.verify(h, receipts.chain_id, buyer.id).credits_added == 120

    def test_not_mined_is_retryable(self, verifier, buyer, receipts):
        with pytest.raises(TxNotFound) as exc:
            verifier.verify(receipts.hash(4), receipts.chain_id, buyer.id)
        assert exc.value.retryable is True

    def test_shallow_block_is_pending(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(5)
        chain.head = 100
        chain.receipts[h] = receipts.build(h, alice.address, package_id=1, block=99)

        with pytest.raises(TxPending) as exc:
            verifier.verify(h, receipts.chain_id, buyer.id)

        assert isinstance(exc.value, TxNotFound)
        assert (exc.value.confirmations, exc.value.required) == (2, 3)

    def test_exact_confirmation_depth_accepted(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(6)
        chain.head = 100
        chain.receipts[h] = receipts.build(h, alice.address, package_id=0, block=98)
        assert verifier.verify(h, receipts.chain_id, buyer.id).credits_added == 100

    def test_rpc_error_is_retryable(self, verifier, chain, buyer, receipts):
        chain.error = ChainRPCError("eth_getTransactionReceipt: header not found")
        with pytest.raises(TxNotFound):
            verifier.verify(receipts.hash(7), receipts.chain_id, buyer.id)
        assert chain.closed == 1

    def test_unknown_chain(self, verifier, chain, buyer, receipts):
        with pytest.raises(WrongChain):
            verifier.verify(receipts.hash(8), 1, buyer.id)
        assert chain.calls == []

    def test_reverted(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(9)
        chain.receipts[h] = receipts.build(h, alice.address, package_id=1, status=0)
        with pytest.raises(TxReverted):
            verifier.verify(h, receipts.chain_id, buyer.id)

    def test_wrong_contract(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(10)
        chain.receipts[h] = receipts.build(h, alice.address, package_id=1, to="0x" + "99" * 20)
        with pytest.raises(WrongContract):
            verifier.verify(h, receipts.chain_id, buyer.id)

    def test_event_from_other_contract_ignored(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(11)
        chain.receipts[h] = receipts.build(h, alice.address, package_id=1, emitter="0x" + "99" * 20)
        with pytest.raises(MalformedEvent):
            verifier.verify(h, receipts.chain_id, buyer.id)

    def test_missing_event(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(12)
        chain.receipts[h] = receipts.build(h, alice.address)
        with pytest.raises(MalformedEvent):
            verifier.verify(h, receipts.chain_id, buyer.id)

    def test_unknown_package(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(13)
        chain.receipts[h] = receipts.build(h, alice.address, package_id=42)
        with pytest.raises(MalformedEvent):
            verifier.verify(h, receipts.chain_id, buyer.id)

    def test_zero_credits(self, verifier, chain, buyer, alice, receipts):
        h = receipts.hash(14)
        chain.receipts[h] = receipts.build(h, alice.address, credits=0)
        with pytest.raises(MalformedEvent):
            verifier.verify(h, receipts.chain_id, buyer.id)

    def test_buyer_must_match_account(self, db, verifier, chain, buyer, bob, receipts):
        h = receipts.hash(15)
        chain.receipts[h] = receipts.build(h, bob.address, package_id=1)
        with pytest.raises(AddressMismatch):
            verifier.verify(h, receipts.chain_id, buyer.id)
        assert LedgerStore(db).balance_of(buyer.id) == 0

    def test_hash_credited_to_other_account(self, verifier, chain, make_account, buyer, alice, bob, receipts):
        h = receipts.hash(16)
        chain.receipts[h] = receipts.build(h, alice.address, package_id=1)
        verifier.verify(h, receipts.chain_id, buyer.id)
        other = make_account(bob.address)

        with pytest.raises(AddressMismatch):
            verifier.verify(h, receipts.chain_id, other.id)

    def test_concurrent_submissions_credit_once(
        self, db, session_factory, buyer, alice, receipts, fake_chain_client
    ):
        h = receipts.hash(17)
        fake = fake_chain_client(receipts={h: receipts.build(h, alice.address, package_id=1)})
        account_id = buyer.id
        db.close()
        results = []
        errors = []
        barrier = threading.Barrier(3)

        def worker():
            session = session_factory()
            try:
                barrier.wait()
                v = PurchaseVerifier(session, chain_client_factory=lambda network: fake)
                results.append(v.verify(h, receipts.chain_id, account_id))
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(r.idempotent for r in results) == [False, True, True]
        assert {r.new_balance for r in results} == {625}
        check = session_factory()
        try:
            assert LedgerStore(check).balance_of(account_id) == 625
            assert check.query(CreditTransaction).filter_by(kind=TransactionKind.PURCHASE).count() == 1
        finally:
            check.close()
