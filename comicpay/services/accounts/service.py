import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from comicpay.errors import AccountNotFound, RoleChangeForbidden
from comicpay.models.account import Account
from comicpay.models.enums import AccountRole

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: str) -> Account:
        account = self.db.query(Account).filter(Account.id == account_id).one_or_none()
        if not account:
            raise AccountNotFound(f"account {account_id} not found")
        return account

    def get_by_address(self, address: str) -> Account | None:
        return self.db.query(Account).filter(Account.wallet_address == address.lower()).one_or_none()

    def get_or_create(self, address: str) -> Account:
        """Created on first successful wallet login. Safe against a concurrent first login."""
        address = address.lower()
        account = self.get_by_address(address)
        if account:
            return account
        try:
            with self.db.begin_nested():
                account = Account(wallet_address=address, username=f"User_{address[2:8]}")
                self.db.add(account)
            self.db.commit()
        except IntegrityError:
            account = self.get_by_address(address)
            if account is None:
                raise
            return account
        logger.info("account_created", extra={"account_id": account.id, "address": address})
        return account

    def set_role(self, account_id: str, role: AccountRole, acting_account_id: str) -> Account:
        account = self.get(account_id)
        if account_id == acting_account_id and role != AccountRole.ADMIN:
            raise RoleChangeForbidden("cannot demote yourself from admin role")
        account.role = role
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        logger.info(
            "account_role_changed",
            extra={"account_id": account_id, "role": role.value, "admin_id": acting_account_id},
        )
        return account
