import copy
import threading
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from .errors import AlreadyPurchasedError


CREATOR_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
BUYER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
CREATOR_PAYOUT_ADDRESS = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"

CONTENT_GUIDE_ID = UUID("33333333-3333-3333-3333-333333333333")
CONTENT_SAMPLES_ID = UUID("44444444-4444-4444-4444-444444444444")
CONTENT_PRESETS_ID = UUID("55555555-5555-5555-5555-555555555555")
CONTENT_COURSE_ID = UUID("66666666-6666-6666-6666-666666666666")


class InMemoryStorage:
    """
    Process-local tables for the ledger.

    Writes that must land together go through ``transaction()``: it holds the
    store-wide lock and undoes the block's writes if it raises. Only the
    outermost transaction keeps an undo log; nested ones join it. Rows are
    mutated through ``for_update()`` and added through the ``insert_*``
    helpers so the log sees every touched row and nothing else.

    Callers serialize per-account workflows with ``account_lock()``.
    """

    def __init__(self, seed: bool = True):
        self.accounts: dict[UUID, dict] = {}
        self.contents: dict[UUID, dict] = {}
        self.credits: dict[UUID, dict] = {}
        self.purchases: dict[UUID, dict] = {}
        self.earnings: dict[UUID, dict] = {}
        self.payouts: dict[UUID, dict] = {}
        self.credit_by_owner: dict[UUID, UUID] = {}
        self.purchase_index: dict[tuple[UUID, UUID], UUID] = {}

        self._lock = threading.RLock()
        self._depth = 0
        self._undo: Optional[list[tuple]] = None
        self._touched: set[tuple[str, object]] = set()
        self._account_locks: dict[UUID, threading.Lock] = {}
        self._account_locks_guard = threading.Lock()

        if seed:
            self._seed_data()

    def _seed_data(self):
        now = datetime.now(timezone.utc)

        self.accounts[CREATOR_ID] = {
            "id": CREATOR_ID, "username": "studio_nova",
            "payout_address": CREATOR_PAYOUT_ADDRESS, "is_creator": True,
            "total_earnings": Decimal("0"), "total_sales": 0, "created_at": now,
        }
        self.accounts[BUYER_ID] = {
            "id": BUYER_ID, "username": "collector_jane",
            "payout_address": None, "is_creator": False,
            "total_earnings": Decimal("0"), "total_sales": 0, "created_at": now,
        }

        for content_id, title, price in (
            (CONTENT_GUIDE_ID, "Smart Contract Field Guide", Decimal("30")),
            (CONTENT_SAMPLES_ID, "Lo-fi Sample Pack", Decimal("50")),
            (CONTENT_PRESETS_ID, "Photo Preset Bundle", Decimal("20")),
            (CONTENT_COURSE_ID, "Full Stack dApp Course", Decimal("80")),
        ):
            self.contents[content_id] = {
                "id": content_id, "title": title, "price": price,
                "creator_id": CREATOR_ID, "sales_count": 0, "created_at": now,
            }

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._undo = []
                self._touched = set()
            self._depth += 1
            try:
                yield self
            except BaseException:
                if outermost:
                    self._rollback()
                raise
            finally:
                self._depth -= 1
                if outermost:
                    self._undo = None
                    self._touched = set()

    def _rollback(self) -> None:
        for action, table, key, saved in reversed(self._undo):
            rows = getattr(self, table)
            if action == "delete":
                rows.pop(key, None)
            else:
                rows[key] = saved

    def _log_insert(self, table: str, key) -> None:
        if self._undo is not None:
            self._undo.append(("delete", table, key, None))
            self._touched.add((table, key))

    def for_update(self, table: str, key) -> Optional[dict]:
        """Live row for in-place mutation; inside a transaction its prior state is logged once."""
        with self._lock:
            row = getattr(self, table).get(key)
            if row is not None and self._undo is not None and (table, key) not in self._touched:
                self._undo.append(("restore", table, key, copy.deepcopy(row)))
                self._touched.add((table, key))
            return row

    def account_lock(self, account_id: UUID) -> threading.Lock:
        with self._account_locks_guard:
            lock = self._account_locks.get(account_id)
            if lock is None:
                lock = self._account_locks[account_id] = threading.Lock()
            return lock

    @contextmanager
    def account_locks(self, *account_ids: UUID) -> Iterator[None]:
        # Sorted acquisition keeps two multi-account workflows from deadlocking.
        with ExitStack() as stack:
            for account_id in sorted(set(account_ids), key=str):
                stack.enter_context(self.account_lock(account_id))
            yield

    def insert(self, table: str, data: dict) -> None:
        with self._lock:
            getattr(self, table)[data["id"]] = data
            self._log_insert(table, data["id"])

    def insert_credit(self, data: dict) -> None:
        with self._lock:
            self.insert("credits", data)
            self.credit_by_owner[data["owner_id"]] = data["id"]
            self._log_insert("credit_by_owner", data["owner_id"])

    def insert_purchase(self, data: dict) -> None:
        key = (data["buyer_id"], data["content_id"])
        with self._lock:
            if key in self.purchase_index:
                raise AlreadyPurchasedError("Content already purchased")
            self.insert("purchases", data)
            self.purchase_index[key] = data["id"]
            self._log_insert("purchase_index", key)

    def insert_earning(self, data: dict) -> None:
        self.insert("earnings", data)

    def rows(self, table: str) -> list[dict]:
        """Stable copy of a table's rows in insertion order, safe to iterate while others write."""
        with self._lock:
            return list(getattr(self, table).values())
