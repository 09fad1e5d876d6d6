from enum import Enum


class AccountRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TransactionKind(str, Enum):
    PURCHASE = "PURCHASE"
    SPEND = "SPEND"
    REFUND = "REFUND"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
