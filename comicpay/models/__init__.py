from .account import Account
from .audit_log import AuditLog
from .auth_nonce import AuthNonce
from .chapter_unlock import ChapterUnlock
from .credit_transaction import CreditTransaction
from .enums import AccountRole, TransactionKind, TransactionStatus

__all__ = [
    "Account",
    "AccountRole",
    "AuditLog",
    "AuthNonce",
    "ChapterUnlock",
    "CreditTransaction",
    "TransactionKind",
    "TransactionStatus",
]
