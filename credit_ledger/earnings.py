"""
Creator earnings queue.

One pending earning is recorded per purchase. Settlement only tags earnings
with the buyer's payment reference; claiming is the creator's separate action
and consumes pending earnings oldest first. A refund reverses the pending
earnings of its purchase.

Every transfer the payout service confirms is logged here before the claim is
booked, and stays open until the booking commits. An open payout blocks
further claims by the same creator.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from .errors import EarningAlreadyClaimedError, InvalidAmountError, InvalidStateTransitionError
from .models import CreatorEarning, EarningBucket, EarningStatus, EarningsSummary, PayoutReceipt, PayoutRecord
from .storage import InMemoryStorage


class EarningsQueue:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def record(self, creator_id: UUID, content_id: UUID, purchase_id: UUID, amount: Decimal) -> CreatorEarning:
        data = {
            "id": uuid4(),
            "creator_id": creator_id,
            "content_id": content_id,
            "purchase_id": purchase_id,
            "amount": Decimal(amount),
            "status": EarningStatus.PENDING,
            "settlement_reference": None,
            "payout_reference": None,
            "split_from": None,
            "created_at": datetime.now(timezone.utc),
            "claimed_at": None,
            "reversed_at": None,
        }
        self.storage.insert_earning(data)
        return CreatorEarning(**data)

    def summarize(self, creator_id: UUID) -> EarningsSummary:
        summary = EarningsSummary()
        for e in self.storage.rows("earnings"):
            if e["creator_id"] != creator_id:
                continue
            bucket: EarningBucket = getattr(summary, e["status"].value)
            bucket.amount += e["amount"]
            bucket.count += 1
        return summary

    def list_pending(self, creator_id: UUID) -> list[CreatorEarning]:
        rows = [
            e for e in self.storage.rows("earnings")
            if e["creator_id"] == creator_id and e["status"] == EarningStatus.PENDING
        ]
        rows.sort(key=lambda e: e["created_at"])
        return [CreatorEarning(**e) for e in rows]

    def list_for_creator(self, creator_id: UUID, limit: int = 50, offset: int = 0) -> tuple[list[CreatorEarning], int]:
        rows = [e for e in reversed(self.storage.rows("earnings")) if e["creator_id"] == creator_id]
        rows.sort(key=lambda e: e["created_at"], reverse=True)
        return [CreatorEarning(**e) for e in rows[offset:offset + limit]], len(rows)

    def attach_settlement_reference(self, purchase_ids: Iterable[UUID], reference: str) -> int:
        wanted = set(purchase_ids)
        count = 0
        with self.storage.transaction():
            for row in self.storage.rows("earnings"):
                if row["purchase_id"] in wanted:
                    data = self.storage.for_update("earnings", row["id"])
                    data["settlement_reference"] = reference
                    count += 1
        return count

    def mark_claimed(self, earning_id: UUID, payout_reference: str, claimed_at: datetime) -> CreatorEarning:
        with self.storage.transaction():
            data = self.storage.for_update("earnings", earning_id)
            self._transition(data, EarningStatus.CLAIMED)
            data["claimed_at"] = claimed_at
            data["payout_reference"] = payout_reference
            return CreatorEarning(**data)

    def split(self, earning_id: UUID, claim_amount: Decimal, payout_reference: str, claimed_at: datetime) -> CreatorEarning:
        """Carve ``claim_amount`` off a pending earning as a new claimed earning; the rest stays pending."""
        with self.storage.transaction():
            data = self.storage.for_update("earnings", earning_id)
            if not 0 < claim_amount < data["amount"]:
                raise InvalidAmountError("Split amount must be strictly between zero and the earning amount")
            data["amount"] -= claim_amount

            part = dict(data, id=uuid4(), amount=claim_amount, split_from=earning_id)
            self.storage.insert_earning(part)
            return self.mark_claimed(part["id"], payout_reference, claimed_at)

    def reverse_for_purchase(self, purchase_id: UUID) -> list[CreatorEarning]:
        """Withdraw a refunded purchase's earnings; any part already paid out blocks the whole reversal."""
        now = datetime.now(timezone.utc)
        reversed_earnings = []
        with self.storage.transaction():
            rows = [e for e in self.storage.rows("earnings") if e["purchase_id"] == purchase_id]
            if any(e["status"] == EarningStatus.CLAIMED for e in rows):
                raise EarningAlreadyClaimedError("Earnings for this purchase were already paid out to the creator")
            for row in rows:
                if row["status"] != EarningStatus.PENDING:
                    continue
                data = self.storage.for_update("earnings", row["id"])
                self._transition(data, EarningStatus.REVERSED)
                data["reversed_at"] = now
                reversed_earnings.append(CreatorEarning(**data))
        return reversed_earnings

    def open_payout(self, creator_id: UUID, receipt: PayoutReceipt) -> PayoutRecord:
        data = {
            "id": uuid4(),
            "creator_id": creator_id,
            "amount": receipt.amount,
            "transaction_hash": receipt.transaction_hash,
            "recipient": receipt.recipient,
            "reconciled": False,
            "created_at": datetime.now(timezone.utc),
            "reconciled_at": None,
        }
        with self.storage.transaction():
            self.storage.insert("payouts", data)
        return PayoutRecord(**data)

    def close_payout(self, payout_id: UUID) -> PayoutRecord:
        with self.storage.transaction():
            data = self.storage.for_update("payouts", payout_id)
            data["reconciled"] = True
            data["reconciled_at"] = datetime.now(timezone.utc)
            return PayoutRecord(**data)

    def open_payouts(self, creator_id: UUID) -> list[PayoutRecord]:
        return [
            PayoutRecord(**p) for p in self.storage.rows("payouts")
            if p["creator_id"] == creator_id and not p["reconciled"]
        ]

    def _transition(self, data: dict, target: EarningStatus) -> None:
        if not CreatorEarning(**data).can_transition_to(target):
            raise InvalidStateTransitionError(
                f"Cannot move earning from {data['status'].value} to {target.value}"
            )
        data["status"] = target
