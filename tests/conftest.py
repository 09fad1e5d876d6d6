"""
Shared fixtures: file-backed SQLite with real transactions, wallets, fake chain.

SQLite runs every transaction as BEGIN IMMEDIATE: writers serialize the way
row locks serialize them on PostgreSQL, and SAVEPOINTs behave.
"""
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="comicpay-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/unused.db"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["SESSION_SECRET"] = "test-session-secret-0123456789"
os.environ["PAYMENT_NETWORKS"] = (
    '{"31337": {"rpc_url": "http://127.0.0.1:8545", '
    '"contract": "0x5FbDB2315678afecb367f032d93F642f64180aa3"}}'
)
os.environ["MIN_CONFIRMATIONS"] = "3"
os.environ["CATALOG_API_BASE"] = ""
os.environ["DEFAULT_UNLOCK_COST"] = "5"

import pytest  # noqa: E402
from eth_abi import encode as abi_encode  # noqa: E402
from eth_account import Account as EthAccount  # noqa: E402
from eth_account.messages import encode_defunct  # noqa: E402
from eth_utils import encode_hex  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import comicpay.models  # noqa: E402,F401
from comicpay.db.base import Base  # noqa: E402
from comicpay.models.enums import TransactionKind  # noqa: E402
from comicpay.services.accounts.service import AccountService  # noqa: E402
from comicpay.services.chain.client import LogEntry, TransactionReceipt  # noqa: E402
from comicpay.services.ledger.service import LedgerStore  # noqa: E402
from comicpay.services.purchases.service import (  # noqa: E402
    CREDITS_PURCHASED_TOPIC,
    PACKAGE_PURCHASED_TOPIC,
)

CHAIN_ID = 31337
CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"

ALICE_KEY = "0x" + "11" * 32
BOB_KEY = "0x" + "22" * 32


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'comicpay.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(eng, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    # Loaded attributes stay readable after commit without starting a new (IMMEDIATE) transaction
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def alice():
    return EthAccount.from_key(ALICE_KEY)


@pytest.fixture
def bob():
    return EthAccount.from_key(BOB_KEY)


@pytest.fixture
def sign():
    def _sign(wallet, message: str) -> str:
        signed = EthAccount.sign_message(encode_defunct(text=message), private_key=wallet.key)
        return encode_hex(signed.signature)

    return _sign


@pytest.fixture
def make_account(db):
    """Account with a starting balance seeded through the ledger (cache == log)."""

    def _make(address: str, balance: int = 0):
        account = AccountService(db).get_or_create(address)
        if balance:
            LedgerStore(db).record(
                account.id, balance, TransactionKind.ADMIN_ADJUSTMENT, description="test seed"
            )
            db.commit()
        return account

    return _make


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def _buyer_topic(address: str) -> str:
    return "0x" + "0" * 24 + address.lower()[2:]


def purchase_receipt(
    hash_: str,
    buyer: str,
    credits: int | None = None,
    package_id: int | None = None,
    amount_wei: int = 10**16,
    block: int = 90,
    status: int = 1,
    to: str = CONTRACT,
    emitter: str = CONTRACT,
) -> TransactionReceipt:
    if package_id is not None:
        topic0, first = PACKAGE_PURCHASED_TOPIC, package_id
    else:
        topic0, first = CREDITS_PURCHASED_TOPIC, credits
    logs = []
    if first is not None:
        logs.append(
            LogEntry(
                address=emitter,
                topics=[topic0, _buyer_topic(buyer)],
                data=encode_hex(abi_encode(["uint256", "uint256"], [first, amount_wei])),
            )
        )
    return TransactionReceipt(
        transaction_hash=hash_,
        status=status,
        block_number=block,
        from_address=buyer.lower(),
        to_address=to,
        logs=logs,
    )


class FakeChainClient:
    def __init__(self, receipts=None, head: int = 100, error: Exception | None = None):
        self.receipts = receipts or {}
        self.head = head
        self.error = error
        self.calls: list[str] = []
        self.closed = 0

    def get_transaction_receipt(self, hash_: str):
        self.calls.append(hash_)
        if self.error:
            raise self.error
        return self.receipts.get(hash_)

    def block_number(self) -> int:
        return self.head

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def chain_factory(chain):
    return lambda network: chain


@pytest.fixture
def receipts():
    """Receipt builders for tests: tx_hash(n) and purchase_receipt(...)."""

    class _Receipts:
        hash = staticmethod(tx_hash)
        build = staticmethod(purchase_receipt)
        chain_id = CHAIN_ID
        contract = CONTRACT

    return _Receipts


@pytest.fixture
def fake_chain_client():
    """The fake client class, for tests that need a client shared across threads."""
    return FakeChainClient
