"""
Application State

The loaded collections, the filter selections and the signed-in user.

DESIGN DECISION: State is an explicit object owned by the ledger and
handed to the components that need it. There is no module-level instance.

Derived views (filtered transactions, dashboard) are methods that
recompute from the current collections every time they are called.

LOAD GENERATIONS: every bulk load takes a token from begin_load(). Only
the result carrying the most recent token may be applied; an older load
that finishes late is discarded instead of overwriting newer data.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from finance_tracker.models.dashboard import DashboardData, TransactionFilters
from finance_tracker.models.finance import (
    Account,
    Category,
    CreditCard,
    EntityType,
    Goal,
    Transaction,
)
from finance_tracker.queries import aggregation


@dataclass
class AppState:
    accounts: list[Account] = field(default_factory=list)
    credit_cards: list[CreditCard] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    goals: list[Goal] = field(default_factory=list)

    filters: TransactionFilters = field(default_factory=TransactionFilters)
    current_user: Optional[str] = None
    load_generation: int = 0

    # Fixed "today" for deterministic periods; None means the real date
    today: Optional[date] = None
    recent_limit: int = aggregation.DEFAULT_RECENT_LIMIT
    unknown_category_name: str = aggregation.UNKNOWN_CATEGORY_NAME
    unknown_category_color: str = aggregation.UNKNOWN_CATEGORY_COLOR

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def begin_load(self) -> int:
        """Start a new load and return its generation token."""
        self.load_generation += 1
        return self.load_generation

    def is_current(self, token: int) -> bool:
        return token == self.load_generation

    def apply_load(self, token: int, snapshot: dict[EntityType, list]) -> bool:
        """
        Replace all collections with a loaded snapshot.

        Returns False (and changes nothing) if a newer load has started
        since this one began.
        """
        if not self.is_current(token):
            return False
        self.accounts = list(snapshot.get(EntityType.ACCOUNTS, []))
        self.credit_cards = list(snapshot.get(EntityType.CREDIT_CARDS, []))
        self.categories = list(snapshot.get(EntityType.CATEGORIES, []))
        self.transactions = list(snapshot.get(EntityType.TRANSACTIONS, []))
        self.goals = list(snapshot.get(EntityType.GOALS, []))
        return True

    def clear(self) -> None:
        """Forget all loaded data and filters (sign-out)."""
        self.accounts = []
        self.credit_cards = []
        self.categories = []
        self.transactions = []
        self.goals = []
        self.filters = TransactionFilters()
        self.current_user = None
        # Invalidate any load still in flight
        self.load_generation += 1

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find_account(self, account_id: Optional[str]) -> Optional[Account]:
        return next((a for a in self.accounts if a.id == account_id), None)

    def find_credit_card(self, card_id: Optional[str]) -> Optional[CreditCard]:
        return next((c for c in self.credit_cards if c.id == card_id), None)

    def find_category(self, category_id: Optional[str]) -> Optional[Category]:
        return next((c for c in self.categories if c.id == category_id), None)

    def find_transaction(self, transaction_id: Optional[str]) -> Optional[Transaction]:
        return next((t for t in self.transactions if t.id == transaction_id), None)

    def find_goal(self, goal_id: Optional[str]) -> Optional[Goal]:
        return next((g for g in self.goals if g.id == goal_id), None)

    def installment_siblings(self, transaction: Transaction) -> list[Transaction]:
        """Every record of the plan a transaction belongs to, itself included."""
        parent_id = transaction.parent_transaction_id or transaction.id
        return [
            t for t in self.transactions
            if t.id == parent_id or t.parent_transaction_id == parent_id
        ]

    def replace_account(self, account: Account) -> None:
        """Swap in the latest known version of an account."""
        self.accounts = [account if a.id == account.id else a for a in self.accounts]

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------

    def filtered_transactions(self) -> list[Transaction]:
        return aggregation.filter_transactions(
            self.transactions,
            self.filters,
            today=self.today or date.today(),
        )

    def dashboard(self) -> Optional[DashboardData]:
        return aggregation.build_dashboard(
            self.accounts,
            self.categories,
            self.filtered_transactions(),
            recent_limit=self.recent_limit,
            unknown_name=self.unknown_category_name,
            unknown_color=self.unknown_category_color,
        )
