"""
On-chain payment config — typed wrappers over comicpay.core.config.settings.
"""
from __future__ import annotations

import json
from dataclasses import dataclass

from comicpay.core.config import settings


@dataclass(frozen=True)
class PaymentNetwork:
    chain_id: int
    rpc_url: str
    contract: str  # lowercase


@dataclass(frozen=True)
class CreditPackage:
    package_id: int
    credits: int
    bonus: int  # percent

    @property
    def total_credits(self) -> int:
        return self.credits + self.credits * self.bonus // 100


def get_payment_networks() -> dict[int, PaymentNetwork]:
    raw = json.loads(settings.payment_networks or "{}")
    return {
        int(chain_id): PaymentNetwork(
            chain_id=int(chain_id),
            rpc_url=cfg["rpc_url"],
            contract=cfg["contract"].lower(),
        )
        for chain_id, cfg in raw.items()
    }


def get_payment_network(chain_id: int) -> PaymentNetwork | None:
    return get_payment_networks().get(chain_id)


def get_credit_packages() -> dict[int, CreditPackage]:
    raw = json.loads(settings.credit_packages or "{}")
    return {
        int(package_id): CreditPackage(
            package_id=int(package_id),
            credits=int(cfg["credits"]),
            bonus=int(cfg.get("bonus", 0)),
        )
        for package_id, cfg in raw.items()
    }


def get_min_confirmations() -> int:
    return settings.min_confirmations
