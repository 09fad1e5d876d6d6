from datetime import datetime

from comicpay.schemas.base import CamelModel


class NonceRequest(CamelModel):
    address: str


class NonceOut(CamelModel):
    nonce: str
    message: str
    expires_at: datetime


class VerifyRequest(CamelModel):
    address: str
    message: str
    signature: str


class SessionOut(CamelModel):
    token: str
    token_type: str = "bearer"
    account_id: str
    address: str
    role: str
    expires_at: datetime | None = None


class MeOut(CamelModel):
    account_id: str
    address: str
    role: str
    username: str | None = None
