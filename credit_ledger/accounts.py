"""Per-buyer credit balance and the log of settlement references applied to it."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from .errors import (
    DuplicateSettlementError,
    InsufficientCreditError,
    InvalidAmountError,
    LedgerNotFoundError,
)
from .models import AccountCredit, SettlementPolicy
from .storage import InMemoryStorage


class AccountLedger:
    def __init__(
        self,
        storage: InMemoryStorage,
        allowance: Decimal = Decimal("100"),
        policy: SettlementPolicy = SettlementPolicy.FULL_RESET,
    ):
        self.storage = storage
        self.allowance = Decimal(allowance)
        self.policy = policy

    def get(self, owner_id: UUID) -> AccountCredit:
        return AccountCredit(**self._row(owner_id))

    def get_or_create(self, owner_id: UUID) -> AccountCredit:
        with self.storage.transaction():
            credit_id = self.storage.credit_by_owner.get(owner_id)
            if credit_id is None:
                now = datetime.now(timezone.utc)
                data = {
                    "id": uuid4(),
                    "owner_id": owner_id,
                    "credit_balance": self.allowance,
                    "settled_references": [],
                    "created_at": now,
                    "updated_at": now,
                }
                self.storage.insert_credit(data)
                return AccountCredit(**data)
            return AccountCredit(**self.storage.credits[credit_id])

    def charge(self, owner_id: UUID, amount: Decimal) -> AccountCredit:
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmountError("Charge amount must be greater than zero")

        # The record outlives a rejected charge.
        self.get_or_create(owner_id)
        with self.storage.transaction():
            data = self._row(owner_id, for_update=True)
            if amount > data["credit_balance"]:
                raise InsufficientCreditError(
                    f"Insufficient credit. Required: {amount}, available: {data['credit_balance']}"
                )
            data["credit_balance"] -= amount
            data["updated_at"] = datetime.now(timezone.utc)
            return AccountCredit(**data)

    def refund(self, owner_id: UUID, amount: Decimal) -> AccountCredit:
        """Give back credit spent on an unsettled purchase, never above the allowance."""
        with self.storage.transaction():
            data = self._row(owner_id, for_update=True)
            data["credit_balance"] = min(self.allowance, data["credit_balance"] + Decimal(amount))
            data["updated_at"] = datetime.now(timezone.utc)
            return AccountCredit(**data)

    def settle(self, owner_id: UUID, reference: str, settled_amount: Decimal = Decimal("0")) -> AccountCredit:
        with self.storage.transaction():
            data = self._row(owner_id, for_update=True)
            if reference in data["settled_references"]:
                raise DuplicateSettlementError("Transaction hash already used for settlement")

            if self.policy == SettlementPolicy.REFUND_SETTLED:
                data["credit_balance"] = min(self.allowance, data["credit_balance"] + Decimal(settled_amount))
            else:
                data["credit_balance"] = self.allowance
            data["settled_references"].append(reference)
            data["updated_at"] = datetime.now(timezone.utc)
            return AccountCredit(**data)

    def _row(self, owner_id: UUID, for_update: bool = False) -> dict:
        credit_id = self.storage.credit_by_owner.get(owner_id)
        if credit_id is None:
            raise LedgerNotFoundError("Credit not found")
        if for_update:
            return self.storage.for_update("credits", credit_id)
        return self.storage.credits[credit_id]
