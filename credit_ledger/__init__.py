"""
Credit Ledger for a Content Marketplace

This package provides:
- Per-buyer credit allowance with replay-safe settlement
- One purchase record per (buyer, content) pair
- Creator earnings queue consumed oldest first by claims
- Creator-issued refunds that reverse unpaid earnings
- Atomic purchase, settlement and claim workflows serialized per account
- FastAPI surface with bearer-token identity resolution
"""

from .models import (
    AccountCredit,
    ClaimPolicy,
    CreatorEarning,
    EarningStatus,
    Purchase,
    PurchaseStatus,
    SettlementPolicy,
)
from .service import LedgerService

__all__ = [
    "AccountCredit",
    "ClaimPolicy",
    "CreatorEarning",
    "EarningStatus",
    "Purchase",
    "PurchaseStatus",
    "SettlementPolicy",
    "LedgerService",
]
