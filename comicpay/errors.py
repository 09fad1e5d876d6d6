"""
Error taxonomy for the credit core.

Every error carries a stable ``code`` that the HTTP layer returns verbatim.
DuplicateExternalTx and AlreadyGranted are idempotency signals: the component
that raises them also absorbs them, callers never see them as failures.
"""
from __future__ import annotations

from typing import Any


class CoreError(Exception):
    code = "internal_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self)}


# ----- Auth -----


class AuthError(CoreError):
    code = "auth_failed"


class SignatureMismatch(AuthError):
    code = "signature_mismatch"


class NonceInvalid(AuthError):
    code = "nonce_invalid"


class MalformedMessage(AuthError):
    code = "malformed_message"


class SessionInvalid(AuthError):
    code = "session_invalid"


class InvalidAddress(AuthError):
    code = "invalid_address"


# ----- Verification -----


class VerificationError(CoreError):
    code = "verification_failed"
    retryable = False


class TxNotFound(VerificationError):
    """Not mined yet, RPC timed out or unreachable. The client should ask again shortly."""

    code = "tx_not_found"
    retryable = True


class TxPending(TxNotFound):
    """Mined but below the required confirmation depth."""

    def __init__(self, confirmations: int, required: int) -> None:
        super().__init__(f"transaction has {confirmations}/{required} confirmations")
        self.confirmations = confirmations
        self.required = required


class WrongChain(VerificationError):
    code = "wrong_chain"


class WrongContract(VerificationError):
    code = "wrong_contract"


class AddressMismatch(VerificationError):
    code = "address_mismatch"


class MalformedEvent(VerificationError):
    code = "malformed_event"


class TxReverted(VerificationError):
    code = "tx_reverted"


# ----- Ledger -----


class LedgerError(CoreError):
    code = "ledger_error"


class InsufficientCredits(LedgerError):
    code = "insufficient_credits"

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"required {required}, available {available}")
        self.required = required
        self.available = available

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "required": self.required, "available": self.available}


class DuplicateExternalTx(LedgerError):
    code = "duplicate_external_tx"

    def __init__(self, transaction: Any) -> None:
        super().__init__(f"external transaction {transaction.external_tx_id} already recorded")
        self.transaction = transaction


class AccountNotFound(LedgerError):
    code = "account_not_found"


class InvalidAmount(LedgerError):
    code = "invalid_amount"


# ----- Entitlement -----


class AlreadyGranted(CoreError):
    code = "already_granted"

    def __init__(self, entitlement: Any) -> None:
        super().__init__(
            f"content unit {entitlement.content_unit_id} already unlocked for {entitlement.account_id}"
        )
        self.entitlement = entitlement


# ----- Catalog / accounts -----


class ContentNotFound(CoreError):
    code = "content_not_found"


class CatalogUnavailable(CoreError):
    code = "catalog_unavailable"


class RoleChangeForbidden(CoreError):
    code = "role_change_forbidden"
