from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from .errors import AlreadyPurchasedError, InvalidStateTransitionError, PurchaseNotFoundError
from .models import ContentItem, Purchase, PurchaseStatus, PurchaseTotals, SalesTotals
from .storage import InMemoryStorage


class PurchaseStore:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def exists(self, buyer_id: UUID, content_id: UUID) -> bool:
        return (buyer_id, content_id) in self.storage.purchase_index

    def create(self, buyer_id: UUID, content: ContentItem) -> Purchase:
        """Record a credit purchase at the content's current price."""
        if self.exists(buyer_id, content.id):
            raise AlreadyPurchasedError("Content already purchased")

        data = {
            "id": uuid4(),
            "buyer_id": buyer_id,
            "content_id": content.id,
            "amount": content.price,
            "status": PurchaseStatus.PENDING,
            "settled": False,
            "settlement_reference": None,
            "created_at": datetime.now(timezone.utc),
            "settled_at": None,
            "refunded_at": None,
        }
        with self.storage.transaction():
            self.storage.insert_purchase(data)
            self._transition(data, PurchaseStatus.COMPLETED)
        return Purchase(**data)

    def get(self, purchase_id: UUID) -> Purchase:
        data = self.storage.purchases.get(purchase_id)
        if not data:
            raise PurchaseNotFoundError("Purchase not found")
        return Purchase(**data)

    def get_for_buyer(self, buyer_id: UUID, purchase_id: UUID) -> Purchase:
        purchase = self.get(purchase_id)
        # Someone else's purchase looks the same as a missing one.
        if purchase.buyer_id != buyer_id:
            raise PurchaseNotFoundError("Purchase not found")
        return purchase

    def list_for_buyer(self, buyer_id: UUID, limit: int = 50, offset: int = 0) -> tuple[list[Purchase], int]:
        rows = [p for p in reversed(self.storage.rows("purchases")) if p["buyer_id"] == buyer_id]
        rows.sort(key=lambda p: p["created_at"], reverse=True)
        return [Purchase(**p) for p in rows[offset:offset + limit]], len(rows)

    def list_for_contents(self, content_ids: Iterable[UUID], limit: int = 50, offset: int = 0) -> tuple[list[Purchase], int]:
        wanted = set(content_ids)
        rows = [p for p in reversed(self.storage.rows("purchases")) if p["content_id"] in wanted]
        rows.sort(key=lambda p: p["created_at"], reverse=True)
        return [Purchase(**p) for p in rows[offset:offset + limit]], len(rows)

    def list_pending_credit(self, buyer_id: UUID) -> list[Purchase]:
        # rows() preserves insertion order, so the stable sort keeps ties FIFO.
        rows = [
            p for p in self.storage.rows("purchases")
            if p["buyer_id"] == buyer_id and not p["settled"] and p["status"] == PurchaseStatus.COMPLETED
        ]
        rows.sort(key=lambda p: p["created_at"])
        return [Purchase(**p) for p in rows]

    def buyer_totals(self, buyer_id: UUID) -> PurchaseTotals:
        totals = PurchaseTotals()
        for p in self.storage.rows("purchases"):
            if p["buyer_id"] != buyer_id:
                continue
            totals.total += 1
            if p["status"] == PurchaseStatus.COMPLETED:
                totals.total_spent += p["amount"]
        return totals

    def sales_totals(self, content_ids: Iterable[UUID]) -> SalesTotals:
        wanted = set(content_ids)
        totals = SalesTotals()
        for p in self.storage.rows("purchases"):
            if p["content_id"] in wanted and p["status"] == PurchaseStatus.COMPLETED:
                totals.total += 1
                totals.total_amount += p["amount"]
        return totals

    def mark_settled(self, purchase_ids: Iterable[UUID], reference: str) -> int:
        now = datetime.now(timezone.utc)
        count = 0
        with self.storage.transaction():
            for purchase_id in purchase_ids:
                data = self.storage.for_update("purchases", purchase_id)
                if not data:
                    raise PurchaseNotFoundError("Purchase not found")
                data["settled"] = True
                data["settlement_reference"] = reference
                data["settled_at"] = now
                count += 1
        return count

    def update_status(self, purchase_id: UUID, target: PurchaseStatus) -> Purchase:
        with self.storage.transaction():
            data = self.storage.for_update("purchases", purchase_id)
            if not data:
                raise PurchaseNotFoundError("Purchase not found")
            self._transition(data, target)
            if target == PurchaseStatus.REFUNDED:
                data["refunded_at"] = datetime.now(timezone.utc)
            return Purchase(**data)

    def _transition(self, data: dict, target: PurchaseStatus) -> None:
        if not Purchase(**data).can_transition_to(target):
            raise InvalidStateTransitionError(
                f"Cannot move purchase from {data['status'].value} to {target.value}"
            )
        data["status"] = target
