"""Wallet credit applied at checkout."""

import logging

logger = logging.getLogger("freshcart.wallet")


def usable_credit(balance: float, payable: float, use_wallet: bool = True) -> float:
    if not use_wallet:
        return 0.0
    return max(0.0, min(balance, payable))


class WalletLedger:
    def __init__(self, backend):
        self.backend = backend

    def usable_credit(self, balance: float, payable: float, use_wallet: bool = True) -> float:
        return usable_credit(balance, payable, use_wallet)

    def debit(self, owner_id: str, amount: float, order_id: str) -> bool:
        """Debit the wallet for an order. Retrying with the same order_id does nothing."""
        if amount <= 0:
            return False
        debited = self.backend.debit_wallet(owner_id, round(amount, 2), order_id)
        if not debited:
            logger.info(f"Wallet already debited for order {order_id}")
        return debited
