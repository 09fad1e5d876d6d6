"""
PurchaseVerifier — сверка on-chain покупки кредитов с журналом.

Шаги: сеть -> receipt -> контракт -> глубина подтверждений -> событие покупки
-> плательщик == кошелёк аккаунта -> LedgerStore.record(PURCHASE).
Повторная отправка того же hash — идемпотентный успех (DuplicateExternalTx поглощается).
Сетевые вызовы идут без каких-либо блокировок аккаунта.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import encode_hex, keccak
from sqlalchemy.orm import Session

from comicpay.errors import (
    AddressMismatch,
    DuplicateExternalTx,
    MalformedEvent,
    TxNotFound,
    TxPending,
    TxReverted,
    VerificationError,
    WrongChain,
    WrongContract,
)
from comicpay.models.credit_transaction import CreditTransaction
from comicpay.models.enums import TransactionKind
from comicpay.services.accounts.service import AccountService
from comicpay.services.chain.client import ChainClient, ChainRPCError, LogEntry, TransactionReceipt
from comicpay.services.ledger.service import LedgerStore
from comicpay.services.purchases.config import (
    PaymentNetwork,
    get_credit_packages,
    get_min_confirmations,
    get_payment_network,
)
from comicpay.utils.metrics import purchase_verifications_total

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

CREDITS_PURCHASED_TOPIC = encode_hex(keccak(text="CreditsPurchased(address,uint256,uint256)"))
PACKAGE_PURCHASED_TOPIC = encode_hex(keccak(text="PackagePurchased(address,uint256,uint256)"))


@dataclass(frozen=True)
class PurchaseEvent:
    buyer: str  # lowercase
    credits: int
    amount_wei: int
    package_id: int | None = None


@dataclass(frozen=True)
class CreditResult:
    credits_added: int
    new_balance: int
    idempotent: bool
    transaction_id: str


def normalize_tx_hash(external_tx_id: str) -> str:
    if not isinstance(external_tx_id, str) or not TX_HASH_RE.match(external_tx_id):
        raise MalformedEvent("externalTxId must be a 0x-prefixed 32-byte transaction hash")
    return external_tx_id.lower()


def _topic_to_address(topic: str) -> str:
    # Indexed address: 32-byte word, address in the low 20 bytes
    return "0x" + topic[-40:].lower()


def decode_purchase_event(receipt: TransactionReceipt, contract: str) -> PurchaseEvent:
    """Decode the first purchase event emitted by the payment contract."""
    for entry in receipt.logs:
        if entry.address != contract or not entry.topics:
            continue
        if entry.topics[0] == CREDITS_PURCHASED_TOPIC:
            buyer, (credits, amount_wei) = _decode_log(entry)
            return PurchaseEvent(buyer=buyer, credits=credits, amount_wei=amount_wei)
        if entry.topics[0] == PACKAGE_PURCHASED_TOPIC:
            buyer, (package_id, amount_wei) = _decode_log(entry)
            package = get_credit_packages().get(package_id)
            if package is None:
                raise MalformedEvent(f"unknown credit package {package_id}")
            return PurchaseEvent(
                buyer=buyer,
                credits=package.total_credits,
                amount_wei=amount_wei,
                package_id=package_id,
            )
    raise MalformedEvent("no purchase event emitted by the payment contract")


def _decode_log(entry: LogEntry) -> tuple[str, tuple[int, int]]:
    if len(entry.topics) < 2:
        raise MalformedEvent("purchase event without indexed buyer")
    try:
        values = abi_decode(["uint256", "uint256"], bytes.fromhex(entry.data.removeprefix("0x")))
    except (DecodingError, ValueError) as e:
        raise MalformedEvent(f"undecodable event data: {e}") from e
    return _topic_to_address(entry.topics[1]), (int(values[0]), int(values[1]))


def default_chain_client_factory(network: PaymentNetwork) -> ChainClient:
    return ChainClient(network.rpc_url, network.chain_id)


class PurchaseVerifier:
    def __init__(
        self,
        db: Session,
        chain_client_factory: Callable[[PaymentNetwork], ChainClient] = default_chain_client_factory,
    ):
        self.db = db
        self.ledger = LedgerStore(db)
        self.accounts = AccountService(db)
        self.chain_client_factory = chain_client_factory

    def verify(self, external_tx_id: str, chain_id: int, claimed_account_id: str) -> CreditResult:
        try:
            result = self._verify(external_tx_id, chain_id, claimed_account_id)
        except VerificationError as e:
            purchase_verifications_total.labels(outcome=e.code).inc()
            logger.info(
                "purchase_verification_failed",
                extra={
                    "account_id": claimed_account_id,
                    "external_tx_id": external_tx_id,
                    "chain_id": chain_id,
                    "error": e.code,
                },
            )
            raise
        purchase_verifications_total.labels(outcome="idempotent" if result.idempotent else "credited").inc()
        return result

    def _verify(self, external_tx_id: str, chain_id: int, claimed_account_id: str) -> CreditResult:
        tx_hash = normalize_tx_hash(external_tx_id)
        account = self.accounts.get(claimed_account_id)

        # Already credited: answer without touching the chain
        existing = self.ledger.get_by_external_tx(tx_hash)
        if existing:
            return self._idempotent(existing, claimed_account_id)

        network = get_payment_network(chain_id)
        if network is None:
            raise WrongChain(f"chain {chain_id} is not a supported payment network")

        # No database transaction stays open across chain I/O
        self.db.rollback()

        receipt, head = self._fetch(network, tx_hash)
        if receipt.status != 1:
            raise TxReverted(f"transaction {tx_hash} reverted")
        if receipt.to_address != network.contract:
            raise WrongContract(f"transaction {tx_hash} was not sent to the payment contract")

        required = get_min_confirmations()
        confirmations = head - receipt.block_number + 1
        if confirmations < required:
            raise TxPending(confirmations=max(confirmations, 0), required=required)

        event = decode_purchase_event(receipt, network.contract)
        if event.credits <= 0:
            raise MalformedEvent("purchase event credits must be positive")
        if event.buyer != account.wallet_address.lower():
            raise AddressMismatch("transaction buyer does not match the authenticated wallet")

        try:
            transaction = self.ledger.record(
                account.id,
                event.credits,
                TransactionKind.PURCHASE,
                external_tx_id=tx_hash,
                chain_id=chain_id,
                description=(
                    f"On-chain purchase of package {event.package_id}"
                    if event.package_id is not None
                    else "On-chain credit purchase"
                ),
            )
        except DuplicateExternalTx as dup:
            self.db.rollback()
            return self._idempotent(dup.transaction, claimed_account_id)
        except Exception:
            self.db.rollback()
            raise
        self.db.commit()

        new_balance = self.ledger.balance_of(account.id)
        logger.info(
            "purchase_credited",
            extra={
                "account_id": account.id,
                "external_tx_id": tx_hash,
                "chain_id": chain_id,
                "credits": event.credits,
                "new_balance": new_balance,
            },
        )
        return CreditResult(
            credits_added=event.credits,
            new_balance=new_balance,
            idempotent=False,
            transaction_id=transaction.id,
        )

    def _fetch(self, network: PaymentNetwork, tx_hash: str) -> tuple[TransactionReceipt, int]:
        client = self.chain_client_factory(network)
        try:
            receipt = client.get_transaction_receipt(tx_hash)
            if receipt is None:
                raise TxNotFound(f"transaction {tx_hash} not mined yet")
            return receipt, client.block_number()
        except ChainRPCError as e:
            raise TxNotFound(str(e)) from e
        finally:
            client.close()

    def _idempotent(self, transaction: CreditTransaction, claimed_account_id: str) -> CreditResult:
        if transaction.account_id != claimed_account_id:
            raise AddressMismatch("transaction already credited to another account")
        return CreditResult(
            credits_added=transaction.amount,
            new_balance=self.ledger.balance_of(claimed_account_id),
            idempotent=True,
            transaction_id=transaction.id,
        )
