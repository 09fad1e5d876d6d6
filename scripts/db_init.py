#!/usr/bin/env python3
"""
Создать таблицы и (опционально) назначить администратора по адресу кошелька.
Запуск из корня проекта: python -m scripts.db_init [--admin 0x...]
"""
import argparse
import os
import sys

# корень проекта в PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import comicpay.models  # noqa: F401  регистрирует модели в Base.metadata
from comicpay.db.base import Base
from comicpay.db.session import SessionLocal, engine
from comicpay.models.enums import AccountRole
from comicpay.services.accounts.service import AccountService
from comicpay.services.auth.service import normalize_address


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create tables, optionally seed an admin wallet")
    parser.add_argument("--admin", help="wallet address to create or promote to ADMIN")
    args = parser.parse_args(argv)

    Base.metadata.create_all(bind=engine)
    print("Таблицы созданы:", ", ".join(sorted(Base.metadata.tables)))

    if not args.admin:
        return
    db = SessionLocal()
    try:
        service = AccountService(db)
        account = service.get_or_create(normalize_address(args.admin))
        # acting id is not an account id: self-demotion guard does not apply
        service.set_role(account.id, AccountRole.ADMIN, acting_account_id="db_init")
        print(f"Администратор: {account.wallet_address} ({account.id})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
