"""
WalletAuthenticator — вход по подписи кошелька (Sign-In with Ethereum, EIP-4361).

Поток: /auth/nonce выдаёт nonce и текст сообщения -> кошелёк подписывает
(personal_sign, EIP-191) -> verify() восстанавливает адрес подписанта,
гасит nonce и возвращает WalletSession с bearer-токеном (itsdangerous).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address
from itsdangerous import BadData, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from comicpay.core.config import settings
from comicpay.errors import (
    AccountNotFound,
    AuthError,
    InvalidAddress,
    MalformedMessage,
    NonceInvalid,
    SessionInvalid,
    SignatureMismatch,
)
from comicpay.models.enums import AccountRole
from comicpay.services.accounts.service import AccountService
from comicpay.services.nonces.service import IssuedNonce, NonceRegistry
from comicpay.utils.metrics import auth_attempts_total

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
NONCE_LINE_RE = re.compile(r"^Nonce: ([0-9a-zA-Z]{8,})$", re.MULTILINE)
SESSION_SALT = "wallet-session"


def normalize_address(address: str) -> str:
    if not isinstance(address, str) or not ADDRESS_RE.match(address):
        raise InvalidAddress("address must be a 0x-prefixed 20-byte hex string")
    return address.lower()


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass(frozen=True)
class SignInChallenge:
    nonce: str
    message: str
    expires_at: datetime


@dataclass(frozen=True)
class WalletSession:
    account_id: str
    address: str  # lowercase
    role: AccountRole
    token: str
    expires_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN


def build_message(
    address: str,
    nonce: str,
    expires_at: datetime,
    domain: str | None = None,
    uri: str | None = None,
    issued_at: datetime | None = None,
) -> str:
    """EIP-4361 message text. The address line carries the EIP-55 checksum."""
    issued_at = issued_at or datetime.now(timezone.utc)
    return "\n".join(
        [
            f"{domain or settings.siwe_domain} wants you to sign in with your Ethereum account:",
            to_checksum_address(address),
            "",
            settings.siwe_statement,
            "",
            f"URI: {uri or settings.siwe_uri}",
            "Version: 1",
            f"Chain ID: {settings.siwe_chain_id}",
            f"Nonce: {nonce}",
            f"Issued At: {_iso(issued_at)}",
            f"Expiration Time: {_iso(expires_at)}",
        ]
    )


def parse_message(message: str) -> tuple[str, str]:
    """Extract (lowercase address, nonce) from a signed EIP-4361 message."""
    if not isinstance(message, str):
        raise MalformedMessage("message must be a string")
    lines = message.splitlines()
    if len(lines) < 2 or "wants you to sign in with your Ethereum account" not in lines[0]:
        raise MalformedMessage("missing sign-in header")
    address = lines[1].strip()
    if not ADDRESS_RE.match(address):
        raise MalformedMessage("missing address line")
    match = NONCE_LINE_RE.search(message)
    if not match:
        raise MalformedMessage("missing nonce line")
    return address.lower(), match.group(1)


class WalletAuthenticator:
    def __init__(self, db: Session, nonces: NonceRegistry | None = None):
        self.db = db
        self.nonces = nonces or NonceRegistry(db)
        self.accounts = AccountService(db)
        self.serializer = URLSafeTimedSerializer(settings.session_secret, salt=SESSION_SALT)

    def challenge(self, address: str, domain: str | None = None, uri: str | None = None) -> SignInChallenge:
        issued: IssuedNonce = self.nonces.issue(normalize_address(address))
        message = build_message(issued.address, issued.nonce, issued.expires_at, domain=domain, uri=uri)
        return SignInChallenge(nonce=issued.nonce, message=message, expires_at=issued.expires_at)

    def verify(self, address: str, message: str, signature: str) -> WalletSession:
        try:
            session = self._verify(address, message, signature)
        except AuthError as e:
            auth_attempts_total.labels(outcome=e.code).inc()
            logger.warning("wallet_auth_failed", extra={"address": str(address).lower(), "error": e.code})
            raise
        auth_attempts_total.labels(outcome="success").inc()
        logger.info("wallet_auth_success", extra={"account_id": session.account_id, "address": session.address})
        return session

    def _verify(self, address: str, message: str, signature: str) -> WalletSession:
        try:
            claimed = normalize_address(address)
        except InvalidAddress as e:
            raise MalformedMessage(str(e)) from e
        signed_address, nonce = parse_message(message)
        if signed_address != claimed:
            raise MalformedMessage("message address does not match the claimed address")

        try:
            recovered = EthAccount.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as e:
            raise SignatureMismatch(f"undecodable signature: {type(e).__name__}") from e
        if recovered.lower() != claimed:
            raise SignatureMismatch("signature was not produced by the claimed address")

        # Nonce is consumed only for a valid signature
        if not self.nonces.consume(claimed, nonce):
            raise NonceInvalid("nonce is unknown, expired or already used")

        account = self.accounts.get_or_create(claimed)
        return self.issue_session(account.id, claimed, account.role)

    def issue_session(self, account_id: str, address: str, role: AccountRole) -> WalletSession:
        token = self.serializer.dumps({"account_id": account_id, "address": address})
        return WalletSession(
            account_id=account_id,
            address=address,
            role=role,
            token=token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=settings.session_ttl_seconds),
        )

    def load_session(self, token: str) -> WalletSession:
        """Validate a bearer token. The role is read from the account, not the token."""
        try:
            data = self.serializer.loads(token, max_age=settings.session_ttl_seconds)
        except BadData as e:
            raise SessionInvalid("session token is invalid or expired") from e
        try:
            account = self.accounts.get(data["account_id"])
        except (AccountNotFound, KeyError, TypeError) as e:
            raise SessionInvalid("session account no longer exists") from e
        if account.wallet_address != data.get("address"):
            raise SessionInvalid("session address does not match the account")
        return WalletSession(
            account_id=account.id,
            address=account.wallet_address,
            role=account.role,
            token=token,
        )
