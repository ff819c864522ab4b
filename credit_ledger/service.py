import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .accounts import AccountLedger
from .catalog import AccountDirectory, ContentCatalog
from .config import Settings, settings as default_settings
from .earnings import EarningsQueue
from .errors import (
    AlreadyPurchasedError,
    ClaimMisalignedError,
    DuplicateSettlementError,
    ExceedsAvailableError,
    InvalidAmountError,
    InvalidReferenceError,
    NoPayoutAddressError,
    NoPendingEarningsError,
    NotContentOwnerError,
    NotCreatorError,
    NothingToSettleError,
    PayoutFailedError,
    PayoutUnreconciledError,
    TransferFailedError,
)
from .models import (
    ClaimPolicy,
    ClaimResult,
    CreatorEarning,
    CreatorEarningsView,
    CreditBalance,
    Purchase,
    PurchaseHistory,
    PurchaseReceipt,
    PurchaseStats,
    PurchaseStatus,
    SettlementResult,
)
from .payouts import PayoutService, SimulatedPayoutService
from .purchases import PurchaseStore
from .storage import InMemoryStorage


logger = logging.getLogger(__name__)


class LedgerService:
    """
    Purchase, settlement and claim workflows over the credit ledger.

    Each workflow holds the locks of the accounts it mutates (buyer for
    purchase and settlement, creator for claims, both for a status change)
    and writes through a single storage transaction, so a failure leaves no
    partial state behind.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        payouts: Optional[PayoutService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or default_settings
        self.storage = storage or InMemoryStorage(seed=self.settings.SEED_DEMO_DATA)
        self.payouts = payouts or SimulatedPayoutService(self.settings.PAYOUT_SIMULATION_DELAY_SECONDS)

        self.ledger = AccountLedger(self.storage, self.settings.CREDIT_ALLOWANCE, self.settings.SETTLEMENT_POLICY)
        self.purchases = PurchaseStore(self.storage)
        self.earnings = EarningsQueue(self.storage)
        self.catalog = ContentCatalog(self.storage)
        self.accounts = AccountDirectory(self.storage)
        self._reference_pattern = re.compile(self.settings.SETTLEMENT_REFERENCE_PATTERN)

    def purchase_content(self, buyer_id: UUID, content_id: UUID) -> PurchaseReceipt:
        content = self.catalog.get(content_id)

        with self.storage.account_lock(buyer_id):
            if self.purchases.exists(buyer_id, content_id):
                raise AlreadyPurchasedError("Content already purchased")

            # Created outside the transaction so a rejected first purchase still leaves a ledger.
            credit = self.ledger.get_or_create(buyer_id)
            with self.storage.transaction():
                if content.price > 0:
                    credit = self.ledger.charge(buyer_id, content.price)
                purchase = self.purchases.create(buyer_id, content)
                earning = self.earnings.record(content.creator_id, content.id, purchase.id, purchase.amount)

        try:
            self.catalog.increment_sales(content_id)
        except Exception:
            logger.warning("Could not bump sales count for content %s", content_id, exc_info=True)

        logger.info(
            "Purchase %s: buyer %s paid %s credit for content %s, %s credit left",
            purchase.id, buyer_id, purchase.amount, content_id, credit.credit_balance,
        )
        return PurchaseReceipt(purchase=purchase, earning=earning, remaining_credit=credit.credit_balance)

    def get_credit_balance(self, owner_id: UUID) -> CreditBalance:
        credit = self.ledger.get_or_create(owner_id)
        return CreditBalance(
            user_id=owner_id,
            credit_balance=credit.credit_balance,
            allowance=self.ledger.allowance,
            settled_references=credit.settled_references,
        )

    def list_purchases(self, buyer_id: UUID, limit: int = 50, offset: int = 0) -> PurchaseHistory:
        purchases, total = self.purchases.list_for_buyer(buyer_id, limit, offset)
        return PurchaseHistory(purchases=purchases, total_count=total)

    def get_purchase(self, buyer_id: UUID, purchase_id: UUID) -> Purchase:
        return self.purchases.get_for_buyer(buyer_id, purchase_id)

    def get_purchase_stats(self, account_id: UUID) -> PurchaseStats:
        content_ids = [c.id for c in self.catalog.list_by_creator(account_id)]
        return PurchaseStats(
            purchases=self.purchases.buyer_totals(account_id),
            sales=self.purchases.sales_totals(content_ids),
        )

    def list_creator_sales(self, creator_id: UUID, limit: int = 50, offset: int = 0) -> PurchaseHistory:
        if not self.accounts.get(creator_id).is_creator:
            raise NotCreatorError("Creator access required")
        content_ids = [c.id for c in self.catalog.list_by_creator(creator_id)]
        purchases, total = self.purchases.list_for_contents(content_ids, limit, offset)
        return PurchaseHistory(purchases=purchases, total_count=total)

    def update_purchase_status(self, actor_id: UUID, purchase_id: UUID, status: PurchaseStatus) -> Purchase:
        """
        Move a purchase through its transition table on behalf of the content's creator.

        A refund reverses the purchase's pending earnings and, when the credit
        was never settled, gives the buyer that credit back. Earnings already
        paid out block the refund.
        """
        purchase = self.purchases.get(purchase_id)
        content = self.catalog.get(purchase.content_id)
        if content.creator_id != actor_id:
            raise NotContentOwnerError("Only the creator of this content can update the purchase")

        with self.storage.account_locks(purchase.buyer_id, content.creator_id):
            purchase = self.purchases.get(purchase_id)
            with self.storage.transaction():
                updated = self.purchases.update_status(purchase_id, status)
                if status == PurchaseStatus.REFUNDED:
                    self.earnings.reverse_for_purchase(purchase_id)
                    if not purchase.settled:
                        self.ledger.refund(purchase.buyer_id, purchase.amount)

        logger.info("Purchase %s moved to %s by %s", purchase_id, status.value, actor_id)
        return updated

    def settle_credit(self, buyer_id: UUID, reference: str) -> SettlementResult:
        with self.storage.account_lock(buyer_id):
            credit = self.ledger.get(buyer_id)

            pending = self.purchases.list_pending_credit(buyer_id)
            if not pending:
                raise NothingToSettleError("No pending purchases to settle")

            total_amount = sum((p.amount for p in pending), Decimal("0"))
            reference = self._validate_reference(reference)
            if credit.has_settled(reference):
                raise DuplicateSettlementError("Transaction hash already used for settlement")

            purchase_ids = [p.id for p in pending]
            with self.storage.transaction():
                credit = self.ledger.settle(buyer_id, reference, total_amount)
                self.purchases.mark_settled(purchase_ids, reference)
                self.earnings.attach_settlement_reference(purchase_ids, reference)

        logger.info(
            "Settlement %s: buyer %s settled %s over %d purchases",
            reference, buyer_id, total_amount, len(purchase_ids),
        )
        return SettlementResult(
            total_amount=total_amount,
            transaction_hash=reference,
            settled_purchases=len(purchase_ids),
            new_credit_balance=credit.credit_balance,
        )

    def get_creator_earnings(self, creator_id: UUID, limit: int = 50, offset: int = 0) -> CreatorEarningsView:
        earnings, total = self.earnings.list_for_creator(creator_id, limit, offset)
        return CreatorEarningsView(
            earnings=earnings,
            summary=self.earnings.summarize(creator_id),
            total_count=total,
        )

    def claim_earnings(self, creator_id: UUID, amount: Decimal) -> ClaimResult:
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmountError("Valid amount is required")

        with self.storage.account_lock(creator_id):
            creator = self.accounts.get(creator_id)
            if not creator.payout_address:
                raise NoPayoutAddressError(
                    "Creator wallet address not found. Please connect your wallet first."
                )

            if self.earnings.open_payouts(creator_id):
                raise PayoutUnreconciledError(
                    "A previous payout is awaiting reconciliation. Contact support before claiming again."
                )

            pending = self.earnings.list_pending(creator_id)
            if not pending:
                raise NoPendingEarningsError("No pending earnings to claim")

            total_pending = sum((e.amount for e in pending), Decimal("0"))
            if amount > total_pending:
                raise ExceedsAvailableError(f"Cannot claim more than available. Pending: {total_pending}")

            plan = self._plan_claim(pending, amount)

            try:
                receipt = self.payouts.transfer(creator.payout_address, amount)
            except TransferFailedError as exc:
                raise PayoutFailedError(f"Failed to transfer payout: {exc}") from exc

            # Committed on its own so it survives a failed booking below.
            payout = self.earnings.open_payout(creator_id, receipt)
            claimed_at = datetime.now(timezone.utc)
            try:
                with self.storage.transaction():
                    for earning, portion in plan:
                        if portion == earning.amount:
                            self.earnings.mark_claimed(earning.id, receipt.transaction_hash, claimed_at)
                        else:
                            self.earnings.split(earning.id, portion, receipt.transaction_hash, claimed_at)
                    self.accounts.record_claim(creator_id, amount, len(plan))
                    self.earnings.close_payout(payout.id)
            except Exception:
                logger.error(
                    "Payout %s of %s reached %s but the claim could not be recorded; payout %s left open",
                    receipt.transaction_hash, amount, creator.payout_address, payout.id,
                )
                raise

        logger.info(
            "Claim %s: creator %s withdrew %s from %d earnings",
            receipt.transaction_hash, creator_id, amount, len(plan),
        )
        return ClaimResult(
            claimed_amount=amount,
            claimed_earnings=len(plan),
            remaining_pending=total_pending - amount,
            transaction_hash=receipt.transaction_hash,
            recipient_wallet=creator.payout_address,
            claimed_at=claimed_at,
        )

    def _plan_claim(self, pending: list[CreatorEarning], amount: Decimal) -> list[tuple[CreatorEarning, Decimal]]:
        """Pair oldest-first earnings with the portion of each the claim consumes."""
        plan = []
        remaining = amount
        for earning in pending:
            if remaining <= 0:
                break
            portion = min(remaining, earning.amount)
            plan.append((earning, portion))
            remaining -= portion

        last, portion = plan[-1]
        if portion < last.amount and self.settings.CLAIM_POLICY == ClaimPolicy.EXACT:
            lower = amount - portion
            upper = lower + last.amount
            if lower > 0:
                hint = f"nearest claimable amounts are {lower} and {upper}"
            else:
                hint = f"smallest claimable amount is {upper}"
            raise ClaimMisalignedError(f"Claim amount must cover whole earnings; {hint}")
        return plan

    def _validate_reference(self, reference: str) -> str:
        if not isinstance(reference, str) or not reference.strip():
            raise InvalidReferenceError("Valid transaction hash is required")
        reference = reference.strip()
        if not self._reference_pattern.match(reference):
            raise InvalidReferenceError("Valid transaction hash is required")
        # Hex digits compare case-insensitively; leading zeros stay significant.
        return reference.lower()
