from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


T = TypeVar("T")


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class EarningStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    REVERSED = "reversed"


class SettlementPolicy(str, Enum):
    FULL_RESET = "full_reset"
    REFUND_SETTLED = "refund_settled"


class ClaimPolicy(str, Enum):
    EXACT = "exact"
    SPLIT = "split"


PURCHASE_TRANSITIONS: dict[PurchaseStatus, frozenset[PurchaseStatus]] = {
    PurchaseStatus.PENDING: frozenset({PurchaseStatus.COMPLETED, PurchaseStatus.FAILED}),
    PurchaseStatus.COMPLETED: frozenset({PurchaseStatus.REFUNDED}),
    PurchaseStatus.FAILED: frozenset(),
    PurchaseStatus.REFUNDED: frozenset(),
}

EARNING_TRANSITIONS: dict[EarningStatus, frozenset[EarningStatus]] = {
    EarningStatus.PENDING: frozenset({EarningStatus.CLAIMED, EarningStatus.REVERSED}),
    EarningStatus.CLAIMED: frozenset(),
    EarningStatus.REVERSED: frozenset(),
}


class LedgerModel(BaseModel):
    """Base for every record and payload: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Account(LedgerModel):
    id: UUID
    username: str
    payout_address: Optional[str] = None
    is_creator: bool = False
    total_earnings: Decimal = Decimal("0")
    total_sales: int = 0
    created_at: datetime


class ContentItem(LedgerModel):
    id: UUID
    title: str
    price: Decimal
    creator_id: UUID
    sales_count: int = 0
    created_at: datetime


class AccountCredit(LedgerModel):
    id: UUID
    owner_id: UUID
    credit_balance: Decimal
    settled_references: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    def has_settled(self, reference: str) -> bool:
        return reference in self.settled_references


class Purchase(LedgerModel):
    id: UUID
    buyer_id: UUID
    content_id: UUID
    amount: Decimal
    status: PurchaseStatus
    settled: bool = False
    settlement_reference: Optional[str] = None
    created_at: datetime
    settled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def can_transition_to(self, target: PurchaseStatus) -> bool:
        return target in PURCHASE_TRANSITIONS[self.status]


class CreatorEarning(LedgerModel):
    id: UUID
    creator_id: UUID
    content_id: UUID
    purchase_id: UUID
    amount: Decimal
    status: EarningStatus = EarningStatus.PENDING
    settlement_reference: Optional[str] = None
    payout_reference: Optional[str] = None
    split_from: Optional[UUID] = None
    created_at: datetime
    claimed_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None

    @computed_field
    @property
    def payment_reference(self) -> Optional[str]:
        if self.status == EarningStatus.CLAIMED:
            return self.payout_reference
        return self.settlement_reference

    def can_transition_to(self, target: EarningStatus) -> bool:
        return target in EARNING_TRANSITIONS[self.status]


class PurchaseRequest(LedgerModel):
    content_id: UUID = Field(..., description="Content item to buy")

    model_config = ConfigDict(json_schema_extra={
        "example": {"contentId": "33333333-3333-3333-3333-333333333333"}
    })


class SettleCreditRequest(LedgerModel):
    transaction_hash: str = Field(..., description="External payment reference paying off the credit")

    model_config = ConfigDict(json_schema_extra={
        "example": {"transactionHash": "0x5d7a3c1f"}
    })


class ClaimEarningsRequest(LedgerModel):
    amount: Decimal = Field(..., gt=0, description="Amount of pending earnings to withdraw")


class UpdatePurchaseStatusRequest(LedgerModel):
    status: PurchaseStatus = Field(..., description="Target status; only moves allowed by the transition table succeed")


class PurchaseReceipt(LedgerModel):
    purchase: Purchase
    earning: CreatorEarning
    remaining_credit: Decimal


class CreditBalance(LedgerModel):
    user_id: UUID
    credit_balance: Decimal
    allowance: Decimal
    settled_references: list[str] = Field(default_factory=list)


class SettlementResult(LedgerModel):
    total_amount: Decimal
    transaction_hash: str
    settled_purchases: int
    new_credit_balance: Decimal


class EarningBucket(LedgerModel):
    amount: Decimal = Decimal("0")
    count: int = 0


class EarningsSummary(LedgerModel):
    pending: EarningBucket = Field(default_factory=EarningBucket)
    claimed: EarningBucket = Field(default_factory=EarningBucket)
    reversed: EarningBucket = Field(default_factory=EarningBucket)


class CreatorEarningsView(LedgerModel):
    earnings: list[CreatorEarning]
    summary: EarningsSummary
    total_count: int


class PurchaseHistory(LedgerModel):
    purchases: list[Purchase]
    total_count: int


class PurchaseTotals(LedgerModel):
    total: int = 0
    total_spent: Decimal = Decimal("0")


class SalesTotals(LedgerModel):
    total: int = 0
    total_amount: Decimal = Decimal("0")


class PurchaseStats(LedgerModel):
    purchases: PurchaseTotals = Field(default_factory=PurchaseTotals)
    sales: SalesTotals = Field(default_factory=SalesTotals)


class ClaimResult(LedgerModel):
    claimed_amount: Decimal
    claimed_earnings: int
    remaining_pending: Decimal
    transaction_hash: str
    recipient_wallet: str
    claimed_at: datetime


class PayoutReceipt(LedgerModel):
    transaction_hash: str
    recipient: str
    amount: Decimal


class PayoutRecord(LedgerModel):
    """A transfer that reached the payout service, open until the claim that caused it is recorded."""

    id: UUID
    creator_id: UUID
    amount: Decimal
    transaction_hash: str
    recipient: str
    reconciled: bool = False
    created_at: datetime
    reconciled_at: Optional[datetime] = None


class ApiResponse(LedgerModel, Generic[T]):
    success: bool = True
    message: str
    data: Optional[T] = None
