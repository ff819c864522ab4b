"""Content lookup and account directory backed by the ledger storage."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .errors import AccountNotFoundError, ContentNotFoundError, InvalidAmountError
from .models import Account, ContentItem
from .storage import InMemoryStorage


class ContentCatalog:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def add(self, title: str, price: Decimal, creator_id: UUID) -> ContentItem:
        if price < 0:
            raise InvalidAmountError("Content price cannot be negative")
        data = {
            "id": uuid4(), "title": title, "price": Decimal(price),
            "creator_id": creator_id, "sales_count": 0,
            "created_at": datetime.now(timezone.utc),
        }
        with self.storage.transaction():
            self.storage.insert("contents", data)
        return ContentItem(**data)

    def get(self, content_id: UUID) -> ContentItem:
        data = self.storage.contents.get(content_id)
        if not data:
            raise ContentNotFoundError("Content not found")
        return ContentItem(**data)

    def list_by_creator(self, creator_id: UUID) -> list[ContentItem]:
        return [ContentItem(**c) for c in self.storage.rows("contents") if c["creator_id"] == creator_id]

    def increment_sales(self, content_id: UUID) -> None:
        with self.storage.transaction():
            data = self.storage.for_update("contents", content_id)
            if not data:
                raise ContentNotFoundError("Content not found")
            data["sales_count"] += 1


class AccountDirectory:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def add(self, username: str, payout_address: Optional[str] = None, is_creator: bool = False) -> Account:
        data = {
            "id": uuid4(), "username": username,
            "payout_address": payout_address, "is_creator": is_creator,
            "total_earnings": Decimal("0"), "total_sales": 0,
            "created_at": datetime.now(timezone.utc),
        }
        with self.storage.transaction():
            self.storage.insert("accounts", data)
        return Account(**data)

    def get(self, account_id: UUID) -> Account:
        data = self.storage.accounts.get(account_id)
        if not data:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return Account(**data)

    def record_claim(self, account_id: UUID, amount: Decimal, sales: int) -> None:
        # Caller holds the claim transaction.
        data = self.storage.for_update("accounts", account_id)
        if not data:
            raise AccountNotFoundError(f"Account {account_id} not found")
        data["total_earnings"] += amount
        data["total_sales"] += sales
