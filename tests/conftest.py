"""
Shared fixtures.

Every test runs against the in-memory record store. No network access.
FlakyRecordStore injects StorageError on a chosen round trip so partial
failures can be reproduced exactly.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from finance_tracker.audit import AuditLogger
from finance_tracker.config import AppSettings
from finance_tracker.models.finance import (
    Account,
    Category,
    CategoryType,
    CreditCard,
    EntityType,
    PaymentMethod,
    TransactionRequest,
    TransactionType,
)
from finance_tracker.orchestrator import FinanceLedger
from finance_tracker.services.storage import (
    InMemoryAuditStorage,
    InMemoryRecordStore,
    StorageError,
)


TODAY = date(2024, 3, 20)


class FlakyRecordStore(InMemoryRecordStore):
    """In-memory store that fails the nth call of a chosen operation."""

    def __init__(self, user_id=None):
        super().__init__(user_id)
        self._calls: dict[tuple[str, EntityType], int] = defaultdict(int)
        self._fail_at: dict[tuple[str, EntityType], int] = {}

    def fail_on(self, operation: str, entity_type: EntityType, nth: int = 1) -> None:
        """Make the nth future call of operation on entity_type raise StorageError."""
        key = (operation, entity_type)
        self._fail_at[key] = self._calls[key] + nth

    def _maybe_fail(self, operation: str, entity_type: EntityType) -> None:
        key = (operation, entity_type)
        self._calls[key] += 1
        if self._fail_at.get(key) == self._calls[key]:
            raise StorageError(f"simulated {operation} failure on {entity_type.value}")

    async def list_records(self, entity_type):
        self._maybe_fail("list", entity_type)
        return await super().list_records(entity_type)

    async def create(self, entity_type, record):
        self._maybe_fail("create", entity_type)
        return await super().create(entity_type, record)

    async def update(self, entity_type, record_id, record):
        self._maybe_fail("update", entity_type)
        return await super().update(entity_type, record_id, record)

    async def delete(self, entity_type, record_id):
        self._maybe_fail("delete", entity_type)
        return await super().delete(entity_type, record_id)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def store() -> FlakyRecordStore:
    return FlakyRecordStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest_asyncio.fixture
async def seed(store) -> dict[str, str]:
    """Alice's accounts, card and categories, plus one record owned by Bob."""
    checking = await store.create(
        EntityType.ACCOUNTS,
        Account(user_id="alice", name="Checking", balance=Decimal("100.00")),
    )
    savings = await store.create(
        EntityType.ACCOUNTS,
        Account(user_id="alice", name="Savings", type="savings", balance=Decimal("500.00")),
    )
    card = await store.create(
        EntityType.CREDIT_CARDS,
        CreditCard(user_id="alice", name="Visa", limit=Decimal("5000"), due_day=10, close_day=3),
    )
    salary = await store.create(
        EntityType.CATEGORIES,
        Category(name="Salary", type=CategoryType.INCOME, color="#00aa00", is_default=True),
    )
    food = await store.create(
        EntityType.CATEGORIES,
        Category(name="Food", type=CategoryType.EXPENSE, color="#aa0000", is_default=True),
    )
    misc = await store.create(
        EntityType.CATEGORIES,
        Category(name="Misc", type=CategoryType.BOTH, color="#0000aa", created_by="alice"),
    )
    bob_wallet = await store.create(
        EntityType.ACCOUNTS,
        Account(user_id="bob", name="Wallet", balance=Decimal("50.00")),
    )
    store.operations.clear()
    return {
        "checking": checking.id,
        "savings": savings.id,
        "card": card.id,
        "salary": salary.id,
        "food": food.id,
        "misc": misc.id,
        "bob_wallet": bob_wallet.id,
    }


@pytest_asyncio.fixture
async def ledger(store, seed, audit_storage, settings) -> FinanceLedger:
    """Ledger signed in as alice, with "today" fixed to TODAY."""
    ledger = FinanceLedger(
        store=store,
        audit_logger=AuditLogger(audit_storage),
        settings=settings,
    )
    ledger.state.today = TODAY
    await ledger.sign_in("alice")
    store.operations.clear()
    return ledger


@pytest.fixture
def make_request(seed):
    """Factory for transaction requests on alice's checking account."""

    def _make(**overrides) -> TransactionRequest:
        data = dict(
            amount=Decimal("50.00"),
            type=TransactionType.EXPENSE,
            category_id=seed["food"],
            date=date(2024, 3, 10),
            description="Groceries",
            payment_method=PaymentMethod.ACCOUNT,
            account_id=seed["checking"],
        )
        data.update(overrides)
        return TransactionRequest(**data)

    return _make


@pytest.fixture
def balance_of(store):
    """Balance as stored, read without a round trip."""

    def _balance(account_id: str) -> Decimal:
        return store.get(EntityType.ACCOUNTS, account_id).balance

    return _balance
