"""
Aggregation Engine

DESIGN DECISION: Aggregation is PURE and DETERMINISTIC.
Every function here takes the loaded collections plus the filter
selections and returns new values. Nothing is cached, nothing is mutated,
and "today" is a parameter, so the same inputs always give the same
dashboard.

Derived views are recomputed from scratch after every confirmed
mutation. At family scale that is cheaper than keeping a cache correct.

Aggregation never raises on dangling references: a transaction whose
category no longer exists is reported under the "Unknown" label instead.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from finance_tracker.formatting import calculate_progress
from finance_tracker.models.dashboard import (
    AccountBalance,
    CategoryExpense,
    DashboardData,
    DateWindow,
    IncomeVsExpense,
    PeriodMode,
    TransactionFilters,
)
from finance_tracker.models.finance import (
    Account,
    Category,
    Goal,
    InstallmentPlanStatus,
    Transaction,
    TransactionType,
)


DEFAULT_RECENT_LIMIT = 10
UNKNOWN_CATEGORY_NAME = "Unknown"
UNKNOWN_CATEGORY_COLOR = "#888888"


# =============================================================================
# PERIOD WINDOWS
# =============================================================================

def _this_month(today: date) -> DateWindow:
    return DateWindow(start=today.replace(day=1), end=today)


def period_window(
    period: PeriodMode,
    today: date,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> DateWindow:
    """
    Resolve a period selection into an inclusive date window.

    - this_month: first day of the month up to today
    - last_month: the whole previous calendar month
    - this_year: January 1st up to today
    - custom: [start, end]; falls back to this_month if a bound is unset
    """
    if period == PeriodMode.LAST_MONTH:
        last_day = today.replace(day=1) - timedelta(days=1)
        return DateWindow(start=last_day.replace(day=1), end=last_day)

    if period == PeriodMode.THIS_YEAR:
        return DateWindow(start=date(today.year, 1, 1), end=today)

    if period == PeriodMode.CUSTOM and start is not None and end is not None:
        return DateWindow(start=start, end=end)

    return _this_month(today)


# =============================================================================
# FILTERING
# =============================================================================

def filter_transactions(
    transactions: Iterable[Transaction],
    filters: TransactionFilters,
    today: Optional[date] = None,
) -> list[Transaction]:
    """
    Select the transactions matching the current filters.

    The date window and the user/account/card filters are AND-combined.
    A filter left as None does not restrict anything. Input order is kept.
    """
    window = period_window(
        filters.period,
        today or date.today(),
        filters.start_date,
        filters.end_date,
    )

    result = []
    for tx in transactions:
        if not window.contains(tx.date):
            continue
        if filters.user_id is not None and tx.user_id != filters.user_id:
            continue
        if filters.account_id is not None and tx.account_id != filters.account_id:
            continue
        if filters.credit_card_id is not None and tx.credit_card_id != filters.credit_card_id:
            continue
        result.append(tx)
    return result


# =============================================================================
# DASHBOARD METRICS
# =============================================================================

def total_balance(accounts: Iterable[Account]) -> Decimal:
    return sum((account.balance for account in accounts), Decimal("0"))


def account_balances(accounts: Iterable[Account]) -> list[AccountBalance]:
    return [
        AccountBalance(
            account_id=account.id,
            name=account.name,
            balance=account.balance,
            color=account.color,
        )
        for account in accounts
    ]


def category_expenses(
    filtered: Iterable[Transaction],
    categories: Iterable[Category],
    unknown_name: str = UNKNOWN_CATEGORY_NAME,
    unknown_color: str = UNKNOWN_CATEGORY_COLOR,
) -> list[CategoryExpense]:
    """
    Sum expense amounts per category.

    Categories appear in the order their first expense appears.
    Income transactions are ignored.
    """
    by_id = {category.id: category for category in categories}
    totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))

    for tx in filtered:
        if tx.type == TransactionType.EXPENSE:
            totals[tx.category_id] += tx.amount

    result = []
    for category_id, amount in totals.items():
        category = by_id.get(category_id)
        result.append(CategoryExpense(
            category_id=category_id,
            amount=amount,
            name=category.name if category else unknown_name,
            color=category.color if category else unknown_color,
        ))
    return result


def income_vs_expense(filtered: Iterable[Transaction]) -> IncomeVsExpense:
    income = Decimal("0")
    expense = Decimal("0")
    for tx in filtered:
        if tx.type == TransactionType.INCOME:
            income += tx.amount
        else:
            expense += tx.amount
    return IncomeVsExpense(income=income, expense=expense)


def recent_transactions(
    filtered: Iterable[Transaction],
    limit: int = DEFAULT_RECENT_LIMIT,
) -> list[Transaction]:
    """Newest first. Same-day transactions keep their input order."""
    return sorted(filtered, key=lambda tx: tx.date, reverse=True)[:limit]


def build_dashboard(
    accounts: list[Account],
    categories: list[Category],
    filtered: list[Transaction],
    recent_limit: int = DEFAULT_RECENT_LIMIT,
    unknown_name: str = UNKNOWN_CATEGORY_NAME,
    unknown_color: str = UNKNOWN_CATEGORY_COLOR,
) -> Optional[DashboardData]:
    """
    Compute the dashboard summary.

    Balances come from all accounts regardless of the filters. Every
    other metric is computed from the filtered transactions.

    Returns None when there is nothing at all to show: no filtered
    transactions and no accounts.
    """
    if not filtered and not accounts:
        return None

    return DashboardData(
        total_balance=total_balance(accounts),
        account_balances=account_balances(accounts),
        category_expenses=category_expenses(
            filtered, categories, unknown_name, unknown_color
        ),
        income_vs_expense=income_vs_expense(filtered),
        recent_transactions=recent_transactions(filtered, recent_limit),
    )


def goal_progress(goal: Goal) -> Decimal:
    """Progress towards a goal's target, as a percentage in [0, 100]."""
    return calculate_progress(goal.current_amount, goal.target_amount)


# =============================================================================
# INSTALLMENT PLANS
# =============================================================================

def installment_plans(transactions: Iterable[Transaction]) -> list[InstallmentPlanStatus]:
    """
    Group split purchases into parent plus children.

    Children are matched to their parent by parent_transaction_id only.
    Children whose parent is gone are not reported.
    """
    transactions = list(transactions)
    children: dict[str, set[int]] = defaultdict(set)
    for tx in transactions:
        if tx.is_installment_child and tx.current_installment:
            children[tx.parent_transaction_id].add(tx.current_installment)

    plans = []
    for tx in transactions:
        if not tx.is_installment_parent:
            continue
        present = {1} | children.get(tx.id, set())
        plans.append(InstallmentPlanStatus(
            parent_id=tx.id,
            description=tx.description,
            installments=tx.installments,
            present=sorted(present),
            missing=[i for i in range(1, tx.installments + 1) if i not in present],
            account_id=tx.account_id,
            balance_applied=tx.balance_applied,
        ))
    return plans


def find_incomplete_plans(transactions: Iterable[Transaction]) -> list[InstallmentPlanStatus]:
    """Plans with missing children, or whose parent never reached its account balance."""
    return [plan for plan in installment_plans(transactions) if plan.needs_repair]
