import logging
import re
import secrets
import time
from decimal import Decimal
from typing import Protocol

from .errors import TransferFailedError
from .models import PayoutReceipt


logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(address: str) -> bool:
    return bool(address) and ADDRESS_PATTERN.match(address) is not None


class PayoutService(Protocol):
    def transfer(self, address: str, amount: Decimal) -> PayoutReceipt:
        ...


class SimulatedPayoutService:
    """
    Stand-in for the platform wallet's stablecoin transfer.

    No chain interaction happens: the receipt carries a random 32-byte hash
    shaped like a real transaction hash.
    """

    def __init__(self, delay_seconds: float = 0.0):
        self.delay_seconds = delay_seconds
        self.transfers: list[PayoutReceipt] = []

    def transfer(self, address: str, amount: Decimal) -> PayoutReceipt:
        if not is_valid_address(address):
            raise TransferFailedError("Invalid recipient address")
        if amount <= 0:
            raise TransferFailedError("Transfer amount must be greater than zero")

        if self.delay_seconds:
            time.sleep(self.delay_seconds)

        receipt = PayoutReceipt(
            transaction_hash=f"0x{secrets.token_hex(32)}",
            recipient=address,
            amount=amount,
        )
        self.transfers.append(receipt)
        logger.info("Simulated payout of %s to %s: %s", amount, address, receipt.transaction_hash)
        return receipt
